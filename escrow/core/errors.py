"""
Typed failures surfaced by the escrow engine.

Every operation raises one of these to its immediate caller; the HTTP layer
maps `code` to a status. Nothing here is swallowed inside the engine.
"""
from typing import Optional


class EscrowError(Exception):
    code = "escrow_error"

    def __init__(self, message: str = "", *, contract_id: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.contract_id = contract_id

    def to_dict(self) -> dict:
        out = {"error": self.code, "detail": self.message}
        if self.contract_id:
            out["contractId"] = self.contract_id
        return out


class NotFound(EscrowError):
    code = "not_found"


class Unauthorized(EscrowError):
    code = "unauthorized"


class ValidationError(EscrowError):
    code = "validation_error"


class IllegalTransition(EscrowError):
    code = "illegal_transition"


class StaleConfirmation(IllegalTransition):
    """A confirmation that lost the race with release, refund or dispute."""
    code = "stale_confirmation"


class LedgerUnavailable(EscrowError):
    """Payment rail failed; the contract stays pending and funding can be retried."""
    code = "ledger_unavailable"


class ConcurrencyConflict(EscrowError):
    code = "concurrency_conflict"
