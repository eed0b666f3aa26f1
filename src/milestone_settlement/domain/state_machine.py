"""Agreement and Milestone State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or the oracle ingestion boundary does, an illegal
transition (e.g., CREATED -> COMPLETED) raises before anything is persisted.

The machines are instantiated per operation at the persisted status and
validate a transition before the ORM row's state field is updated.

Agreement transition table:
    CREATED   -> FUNDED     (deposit_confirmed)
    FUNDED    -> ACTIVE     (milestone_verified)
    ACTIVE    -> ACTIVE     (milestone_verified, milestone_released)
    ACTIVE    -> COMPLETED  (all_milestones_released)
    FUNDED    -> REFUNDED   (timeout_refund)
    ACTIVE    -> REFUNDED   (timeout_refund)
    FUNDED    -> DISPUTED   (dispute_raised)
    ACTIVE    -> DISPUTED   (dispute_raised)
    DISPUTED  -> REFUNDED   (dispute_resolved_for_payer)
    DISPUTED  -> ACTIVE     (dispute_resolved_for_beneficiary)

Milestone transition table:
    PENDING   -> VERIFIED   (evidence_accepted)
    VERIFIED  -> RELEASED   (funds_released)
    PENDING   -> CANCELLED  (agreement_refunded)
    VERIFIED  -> CANCELLED  (agreement_refunded)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from milestone_settlement.domain.exceptions import InvalidStateTransitionError


class _GuardMixin:
    """Shared construction/introspection for the guards below."""

    def _start_at(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        StateMachine.__init__(self, start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the enum value)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class AgreementStateMachine(_GuardMixin, StateMachine):
    """State machine that guards agreement lifecycle transitions.

    Usage:
        sm = AgreementStateMachine(current_status="FUNDED")
        sm.milestone_verified()  # transitions to ACTIVE
        sm.status                # "ACTIVE"
    """

    # --- States ---
    CREATED = State("CREATED", initial=True)
    FUNDED = State("FUNDED")
    ACTIVE = State("ACTIVE")
    COMPLETED = State("COMPLETED", final=True)
    REFUNDED = State("REFUNDED", final=True)
    DISPUTED = State("DISPUTED")

    # --- Events / Transitions ---

    # Funding
    deposit_confirmed = CREATED.to(FUNDED)

    # Milestones
    milestone_verified = FUNDED.to(ACTIVE) | ACTIVE.to.itself()
    milestone_released = ACTIVE.to.itself()
    all_milestones_released = ACTIVE.to(COMPLETED)

    # Refunds
    timeout_refund = FUNDED.to(REFUNDED) | ACTIVE.to(REFUNDED)

    # Disputes
    dispute_raised = FUNDED.to(DISPUTED) | ACTIVE.to(DISPUTED)
    dispute_resolved_for_payer = DISPUTED.to(REFUNDED)
    dispute_resolved_for_beneficiary = DISPUTED.to(ACTIVE)

    def __init__(self, current_status: str = "CREATED") -> None:
        self._start_at(current_status)


class MilestoneStateMachine(_GuardMixin, StateMachine):
    """State machine that guards a single milestone's lifecycle."""

    PENDING = State("PENDING", initial=True)
    VERIFIED = State("VERIFIED")
    RELEASED = State("RELEASED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    evidence_accepted = PENDING.to(VERIFIED)
    funds_released = VERIFIED.to(RELEASED)
    agreement_refunded = PENDING.to(CANCELLED) | VERIFIED.to(CANCELLED)

    def __init__(self, current_status: str = "PENDING") -> None:
        self._start_at(current_status)


def fire_transition(
    machine_cls: type[AgreementStateMachine] | type[MilestoneStateMachine],
    current_status: str,
    event_name: str,
) -> str:
    """Validate a transition and return the new status.

    Creates a temporary state machine at ``current_status``, fires the named
    event, and returns the resulting status string.

    Raises:
        InvalidStateTransitionError: If the transition is illegal.
        ValueError: If the event name is unknown to the machine.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(current_status, event_name) from err
    return sm.status
