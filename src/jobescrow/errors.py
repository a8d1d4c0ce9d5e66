"""Error taxonomy for the escrow engine.

Every error is terminal for the attempted operation. Nothing is retried
inside the core and nothing is partially applied: when one of these is
raised, the job registry and the ledger are exactly as they were before
the call.

All errors subclass ValueError so callers that only care about
"rejected" can catch the broad type, as the rest of the codebase does.
"""

from __future__ import annotations


class EscrowError(ValueError):
    """Base class for rejected escrow operations."""

    code = "escrow_error"


class InvalidInput(EscrowError):
    """Malformed job creation parameters."""

    code = "invalid_input"


class NotFound(EscrowError):
    """Unknown job id."""

    code = "not_found"


class InvalidState(EscrowError):
    """Operation not legal in the job's current state."""

    code = "invalid_state"


class Unauthorized(EscrowError):
    """Caller lacks the role the transition requires."""

    code = "unauthorized"


class TooEarly(EscrowError):
    """Auto-release attempted before the job's deadline."""

    code = "too_early"


class LedgerError(EscrowError):
    """The token custodian rejected a transfer."""

    code = "ledger_error"

    def __init__(self, message: str, reason: str = "") -> None:
        super().__init__(message)
        self.reason = reason


class InsufficientFunds(LedgerError):
    """The paying account cannot cover the transfer."""

    code = "insufficient_funds"
