"""FastAPI application entry point for the milestone settlement service.

Lifecycle:
    1. Startup: Initialize logging and the database, build the settlement
       peer adapter, fallback controller, verifier registry, Agreement Engine
       and oracle service, and store them on ``app.state``.
    2. Running: Serve the REST API at /api/v1/* plus /health.
    3. Shutdown: Wait for in-flight peer writes and their late receipts, then
       close the peer HTTP client and dispose of the database engine.

Run with:
    uvicorn milestone_settlement.main:app --reload --host 0.0.0.0 --port 4000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from milestone_settlement.config import APP_VERSION, Settings, get_settings
from milestone_settlement.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown lifecycle."""
        # 1. Setup structured logging
        setup_logging(
            log_level=settings.app_log_level,
            json_logs=not settings.is_development,
            network_mode=settings.network_mode.value,
        )
        logger = get_logger(__name__)
        logger.info(
            "app.starting",
            env=settings.app_env,
        )

        # 2. Initialize database
        from milestone_settlement.infrastructure.database.engine import close_db, init_db

        db_engine, session_factory = await init_db(settings)

        # 3. Settlement peer + fallback routing
        from milestone_settlement.infrastructure.peer.client import HttpSettlementPeer
        from milestone_settlement.services.fallback_controller import FallbackController

        peer = None if settings.simulation_forced else HttpSettlementPeer.from_settings(settings)
        controller = FallbackController.from_settings(settings, peer)

        # 4. Domain services
        from milestone_settlement.services.agreement_engine import AgreementEngine
        from milestone_settlement.services.oracle_service import OracleService
        from milestone_settlement.verifiers import VerifierRegistry

        registry = VerifierRegistry.default(enabled=settings.allowed_sources)
        engine = AgreementEngine.from_settings(settings, session_factory, controller, registry)

        app.state.settings = settings
        app.state.db_engine = db_engine
        app.state.controller = controller
        app.state.engine = engine
        app.state.oracle = OracleService.from_settings(settings, engine)

        logger.info(
            "app.started",
            host=settings.app_host,
            port=settings.app_port,
            peer_configured=peer is not None,
            sources=[s.value for s in registry.sources],
        )

        yield

        # Shutdown
        logger.info("app.shutting_down")
        await controller.drain()
        if peer is not None:
            await peer.aclose()
        await close_db(db_engine)
        logger.info("app.stopped")

    app = FastAPI(
        title="Milestone Settlement",
        description=(
            "Milestone-based escrow settlement: funds lock on deposit and release "
            "per milestone once external evidence is verified."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from milestone_settlement.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from milestone_settlement.api.routes.agreements import router as agreements_router
    from milestone_settlement.api.routes.health import router as health_router
    from milestone_settlement.api.routes.stats import router as stats_router
    from milestone_settlement.api.routes.webhooks import router as webhooks_router

    app.include_router(health_router)
    app.include_router(agreements_router)
    app.include_router(webhooks_router)
    app.include_router(stats_router)

    return app


# The app instance used by Uvicorn
app = create_app()
