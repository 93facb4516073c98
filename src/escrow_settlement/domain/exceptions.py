"""Domain exceptions for the escrow settlement core.

These exceptions are framework-agnostic and represent business rule violations.
An HTTP layer maps ``code`` to a response status.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "SETTLEMENT_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidEscrowState(SettlementError):
    """Raised when an escrow transition is not allowed from its current status.

    Also raised when a conditional update loses a race: the row was no longer
    in the expected status by the time the update ran.
    """

    def __init__(self, current_state: str, attempted: str, detail: str = "") -> None:
        message = f"Invalid escrow transition: {current_state} -> {attempted}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message=message, code="INVALID_ESCROW_STATE")
        self.current_state = current_state
        self.attempted = attempted


class InvalidDisputeState(InvalidEscrowState):
    """Raised when a dispute transition is not allowed from its current status."""

    def __init__(self, current_state: str, attempted: str, detail: str = "") -> None:
        super().__init__(current_state, attempted, detail)
        self.message = self.message.replace("escrow", "dispute", 1)
        self.args = (self.message,)
        self.code = "INVALID_DISPUTE_STATE"


# --- Authorization ---


class NotCounterparty(SettlementError):
    """Raised when an actor is not entitled to perform an escrow, proof or dispute action."""

    def __init__(self, actor: str, action: str) -> None:
        super().__init__(
            message=f"Actor {actor!r} is not permitted to {action}",
            code="NOT_COUNTERPARTY",
        )
        self.actor = actor
        self.action = action


# --- Risk ---


class RiskBlocked(SettlementError):
    """Raised when the risk gate refuses a creation or funding attempt."""

    def __init__(self, assessment_id: str, level: str) -> None:
        super().__init__(
            message=(
                f"Transaction blocked by risk assessment {assessment_id} "
                f"(level {level}); it will not be retried automatically"
            ),
            code="RISK_BLOCKED",
        )
        self.assessment_id = assessment_id
        self.level = level


class ExternalSignalUnavailable(SettlementError):
    """Raised by reputation collaborators when a lookup cannot be completed.

    The risk engine absorbs this; it is never surfaced to callers of ``assess``.
    """

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(
            message=f"External signal {source!r} unavailable: {reason}",
            code="EXTERNAL_SIGNAL_UNAVAILABLE",
        )
        self.source = source
        self.reason = reason


# --- Encryption ---


class DecryptionFailure(SettlementError):
    """Raised when an encrypted envelope cannot be authenticated or parsed."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Decryption failed: {reason}", code="DECRYPTION_FAILURE")
        self.reason = reason


class EncryptionKeyError(SettlementError):
    """Raised at startup when the field encryption key is missing or malformed."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=f"Encryption key rejected: {reason}", code="ENCRYPTION_KEY_ERROR")


# --- Input / lookup ---


class ValidationFailure(SettlementError):
    """Raised for malformed amounts, milestone sums, sequence numbers and splits."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_FAILURE")
        self.field = field


class EntityNotFound(SettlementError):
    """Raised when an escrow, milestone, proof, dispute or assessment id does not exist."""

    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(message=f"{kind} not found: {entity_id}", code="NOT_FOUND")
        self.kind = kind
        self.entity_id = str(entity_id)


class AlreadyReviewed(SettlementError):
    """Raised on a second review of a proof or risk assessment."""

    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(
            message=f"{kind} {entity_id} has already been reviewed",
            code="ALREADY_REVIEWED",
        )
        self.kind = kind
        self.entity_id = str(entity_id)
