"""Escrow and dispute state machine guards.

Uses python-statemachine to enforce legal transitions at the domain level.
A machine is instantiated at the row's current status, the named event is
fired, and only then is the new status written (through a conditional update,
see EscrowRepository.compare_and_set_status).

Escrow transition table:
    PENDING   -> FUNDED      (fund)
    PENDING   -> CANCELLED   (cancel)
    FUNDED    -> RELEASED    (release)
    FUNDED    -> REFUNDED    (refund)
    FUNDED    -> DISPUTED    (dispute)
    DISPUTED  -> RELEASED    (release)
    DISPUTED  -> REFUNDED    (refund)
    DISPUTED  -> COMPLETED   (settle_split)

Dispute transition table:
    OPEN                   -> UNDER_REVIEW           (begin_review)
    UNDER_REVIEW           -> RESOLVED_FOR_MERCHANT  (favor_merchant)
    UNDER_REVIEW           -> RESOLVED_FOR_CUSTOMER  (favor_customer)
    UNDER_REVIEW           -> ESCALATED              (escalate)
    RESOLVED_FOR_* / ESCALATED -> CLOSED             (close)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from escrow_settlement.domain.exceptions import InvalidDisputeState, InvalidEscrowState


class _GuardMixin:
    """Shared helpers for machines that are started at an arbitrary status."""

    @classmethod
    def _validated_start(cls, current_status: str) -> str:
        valid_values = {s.value for s in cls.states}  # type: ignore[attr-defined]
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        return current_status

    @property
    def status(self) -> str:
        """Return the current state value as a string."""
        return str(self.current_state.value)  # type: ignore[attr-defined]

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [event.name for event in self.allowed_events]  # type: ignore[attr-defined]


class EscrowStateMachine(_GuardMixin, StateMachine):
    """Guards the escrow lifecycle.

    Usage:
        sm = EscrowStateMachine("FUNDED")
        sm.release()
        sm.status  # "RELEASED"
    """

    PENDING = State("PENDING", initial=True)
    FUNDED = State("FUNDED")
    DISPUTED = State("DISPUTED")
    RELEASED = State("RELEASED", final=True)
    REFUNDED = State("REFUNDED", final=True)
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    fund = PENDING.to(FUNDED)
    cancel = PENDING.to(CANCELLED)
    dispute = FUNDED.to(DISPUTED)
    release = FUNDED.to(RELEASED) | DISPUTED.to(RELEASED)
    refund = FUNDED.to(REFUNDED) | DISPUTED.to(REFUNDED)
    settle_split = DISPUTED.to(COMPLETED)

    def __init__(self, current_status: str = "PENDING") -> None:
        super().__init__(start_value=self._validated_start(current_status))


class DisputeStateMachine(_GuardMixin, StateMachine):
    """Guards the dispute lifecycle."""

    OPEN = State("OPEN", initial=True)
    UNDER_REVIEW = State("UNDER_REVIEW")
    RESOLVED_FOR_MERCHANT = State("RESOLVED_FOR_MERCHANT")
    RESOLVED_FOR_CUSTOMER = State("RESOLVED_FOR_CUSTOMER")
    ESCALATED = State("ESCALATED")
    CLOSED = State("CLOSED", final=True)

    begin_review = OPEN.to(UNDER_REVIEW)
    favor_merchant = UNDER_REVIEW.to(RESOLVED_FOR_MERCHANT)
    favor_customer = UNDER_REVIEW.to(RESOLVED_FOR_CUSTOMER)
    escalate = UNDER_REVIEW.to(ESCALATED)
    close = (
        RESOLVED_FOR_MERCHANT.to(CLOSED)
        | RESOLVED_FOR_CUSTOMER.to(CLOSED)
        | ESCALATED.to(CLOSED)
    )

    def __init__(self, current_status: str = "OPEN") -> None:
        super().__init__(start_value=self._validated_start(current_status))


def next_escrow_status(current_status: str, event_name: str) -> str:
    """Fire ``event_name`` from ``current_status`` and return the resulting status.

    Raises:
        InvalidEscrowState: If the event is unknown or not allowed from the status.
    """
    return _fire(EscrowStateMachine, InvalidEscrowState, current_status, event_name)


def next_dispute_status(current_status: str, event_name: str) -> str:
    """Dispute counterpart of :func:`next_escrow_status`."""
    return _fire(DisputeStateMachine, InvalidDisputeState, current_status, event_name)


def _fire(machine_cls, error_cls, current_status: str, event_name: str) -> str:  # noqa: ANN001
    try:
        sm = machine_cls(current_status)
    except ValueError as err:
        raise error_cls(current_status, event_name, "unknown status") from err
    event_method = getattr(sm, event_name, None)
    if event_method is None or event_name not in {e.name for e in sm.events}:
        raise error_cls(current_status, event_name, "unknown event")
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise error_cls(current_status, event_name) from err
    return sm.status
