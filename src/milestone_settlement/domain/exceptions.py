"""Domain exceptions for milestone settlement.

These exceptions are framework-agnostic and represent business rule violations
or settlement peer failures. They are caught and translated to HTTP responses
by the API layer's middleware. Every error carries a stable ``code`` and a
human-readable ``message``.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "SETTLEMENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationError(SettlementError):
    """Raised for malformed or inconsistent input (e.g. milestone sum mismatch)."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")


class AmountMismatchError(SettlementError):
    """Raised when a deposit does not equal the agreement total."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            message=f"Deposit amount must equal total amount ({expected}), got {actual}",
            code="AMOUNT_MISMATCH",
        )
        self.expected = expected
        self.actual = actual


# --- State Errors ---


class InvalidStateError(SettlementError):
    """Raised when an operation is not legal in the current agreement/milestone state.

    Example: releasing a milestone that is still PENDING.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        super().__init__(message=message, code="INVALID_STATE")
        self.current_state = current_state


class InvalidStateTransitionError(InvalidStateError):
    """Raised when the state machine guard refuses a transition."""

    def __init__(self, current_state: str, attempted_event: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {attempted_event} not allowed from {current_state}",
            current_state=current_state,
        )
        self.attempted_event = attempted_event


class TooEarlyError(SettlementError):
    """Raised when a refund is requested before the agreement's timeout deadline."""

    def __init__(self, timeout_at: str) -> None:
        super().__init__(
            message=f"Refund timeout not reached (refund allowed from {timeout_at})",
            code="TOO_EARLY",
        )
        self.timeout_at = timeout_at


class ConcurrentModificationError(SettlementError):
    """Raised when the store detects a lost update on an agreement."""

    def __init__(self, agreement_id: str) -> None:
        super().__init__(
            message=f"Agreement was modified concurrently: {agreement_id}",
            code="CONCURRENT_MODIFICATION",
        )


# --- Lookup Errors ---


class NotFoundError(SettlementError):
    """Base for unknown identifiers."""

    def __init__(self, message: str, code: str = "NOT_FOUND") -> None:
        super().__init__(message=message, code=code)


class AgreementNotFoundError(NotFoundError):
    def __init__(self, agreement_id: str) -> None:
        super().__init__(
            message=f"Agreement not found: {agreement_id}",
            code="AGREEMENT_NOT_FOUND",
        )
        self.agreement_id = agreement_id


class MilestoneNotFoundError(NotFoundError):
    def __init__(self, agreement_id: str, milestone_id: str) -> None:
        super().__init__(
            message=f"Milestone {milestone_id} not found on agreement {agreement_id}",
            code="MILESTONE_NOT_FOUND",
        )
        self.milestone_id = milestone_id


# --- Identity Errors ---


class ForbiddenError(SettlementError):
    """Raised when the caller is not the party allowed to perform an operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


class UnauthorizedError(SettlementError):
    """Raised when an oracle or signature check does not authorize an action."""

    def __init__(self, message: str, code: str = "UNAUTHORIZED") -> None:
        super().__init__(message=message, code=code)


class EvidenceRejectedError(UnauthorizedError):
    """Raised when the evidence verifier rejects a milestone claim.

    The verifier's reason string is preserved verbatim.
    """

    def __init__(self, reason: str, evidence_event_id: str | None = None) -> None:
        super().__init__(message=reason, code="EVIDENCE_REJECTED")
        self.reason = reason
        self.evidence_event_id = evidence_event_id


class InvalidSignatureError(UnauthorizedError):
    def __init__(self) -> None:
        super().__init__(message="Invalid webhook signature", code="INVALID_SIGNATURE")


class UnknownSourceError(ValidationError):
    """Raised when evidence arrives from a source that is not enabled."""

    def __init__(self, source: str) -> None:
        super().__init__(message=f"Unknown or disabled evidence source: {source}")
        self.code = "UNKNOWN_SOURCE"
        self.source = source


# --- Settlement Peer Errors ---


class PeerError(SettlementError):
    """Base exception for settlement peer failures.

    ``should_fallback`` tells the fallback controller whether the failure
    concerns the peer's availability (simulate and continue) or the request
    itself (propagate).
    """

    def __init__(self, message: str, code: str = "PEER_ERROR", should_fallback: bool = True) -> None:
        super().__init__(message=message, code=code)
        self.should_fallback = should_fallback


class PeerTimeoutError(PeerError):
    def __init__(self, message: str = "Settlement peer request timed out") -> None:
        super().__init__(message=message, code="PEER_TIMEOUT", should_fallback=True)


class PeerConnectionError(PeerError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="PEER_CONNECTION_ERROR", should_fallback=True)


class PeerUnavailableError(PeerError):
    """5xx-equivalent answer from the peer."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, code="PEER_UNAVAILABLE", should_fallback=True)
        self.status_code = status_code


class PeerRejectedError(PeerError):
    """4xx-equivalent answer from the peer: the request itself was invalid there."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, code="PEER_REJECTED", should_fallback=False)
        self.status_code = status_code
