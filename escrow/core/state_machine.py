"""
Escrow State Machine
--------------------
transition(contract, event, now_ms) is a pure function: it validates the
event against the current snapshot and returns a NEW contract, or raises.
It never touches storage, timers or the dispatcher; the engine applies the
result through compare-and-swap.

    pending  + FundConfirmed        -> locked
    locked   + Confirm              -> locked | released (quorum)
    locked   + AutoReleaseFired     -> released (now >= deadline)
    locked   + Dispute              -> disputed
    locked   + AdminRelease/Refund  -> released | refunded
    disputed + AdminRelease/Refund  -> released | refunded
    anything else                   -> IllegalTransition
"""
from dataclasses import dataclass
from typing import List

from escrow.core import confirmations
from escrow.core.errors import IllegalTransition, Unauthorized, ValidationError
from escrow.store.models import (
    CONF_CONFIRMED,
    CONF_DISPUTED,
    CONF_PENDING,
    DISPUTED,
    LEGAL_COMBINATIONS,
    LOCKED,
    PENDING,
    REFUNDED,
    RELEASED,
    RES_ADMIN_REFUND,
    RES_ADMIN_RELEASE,
    RES_AUTO_RELEASE,
    RES_CONFIRMED,
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    Contract,
)
from escrow.utils.time import to_iso


@dataclass(frozen=True)
class FundConfirmed:
    tx_id: str
    window_ms: int
    name = "fund_confirmed"


@dataclass(frozen=True)
class Confirm:
    party_id: str
    name = "confirm"


@dataclass(frozen=True)
class AutoReleaseFired:
    name = "auto_release_fired"


@dataclass(frozen=True)
class Dispute:
    party_id: str
    reason: str
    name = "dispute"


@dataclass(frozen=True)
class AdminRelease:
    admin_id: str
    name = "admin_release"


@dataclass(frozen=True)
class AdminRefund:
    admin_id: str
    name = "admin_refund"


ADMIN_SOURCE_STATES = (LOCKED, DISPUTED)


def describe_state(contract: Contract) -> str:
    """Human-readable 'already <status> at <time>' used in rejection messages."""
    status = contract.escrow_status
    if status in TERMINAL_STATUSES and contract.resolved_at:
        return f"already {status} at {to_iso(contract.resolved_at)}"
    if status == LOCKED and contract.funded_at:
        return f"locked since {to_iso(contract.funded_at)}"
    return f"currently {status}"


def _illegal(contract: Contract, event) -> IllegalTransition:
    return IllegalTransition(
        f"{event.name} is not allowed for contract {contract.id}: {describe_state(contract)}",
        contract_id=contract.id,
    )


def _resolve(contract: Contract, *, status: str, confirmation_status: str, now_ms: int,
             resolved_by: str, resolution: str, **extra) -> Contract:
    return contract.copy(
        escrow_status=status,
        confirmation_status=confirmation_status,
        auto_release_deadline=None,
        # disputed_by and resolution remain as the audit trail
        dispute_reason=None,
        resolved_at=now_ms,
        resolved_by=resolved_by,
        resolution=resolution,
        **extra,
    )


def _fund(contract: Contract, event: FundConfirmed, now_ms: int) -> Contract:
    if contract.escrow_status != PENDING:
        raise _illegal(contract, event)
    if contract.amount <= 0:
        raise ValidationError("amount must be positive", contract_id=contract.id)
    if not (event.tx_id or "").strip():
        raise ValidationError("ledger tx id must be non-empty", contract_id=contract.id)
    if contract.ledger_tx_id:
        raise _illegal(contract, event)
    return contract.copy(
        escrow_status=LOCKED,
        ledger_tx_id=event.tx_id,
        funded_at=now_ms,
        auto_release_deadline=now_ms + int(event.window_ms),
    )


def _confirm(contract: Contract, event: Confirm, now_ms: int) -> Contract:
    repeat = confirmations.check_confirmation(contract, event.party_id)
    if repeat:
        return contract.copy()
    updated = confirmations.record_confirmation(contract, event.party_id)
    if confirmations.has_quorum(updated):
        return _resolve(
            updated,
            status=RELEASED,
            confirmation_status=CONF_CONFIRMED,
            now_ms=now_ms,
            resolved_by=event.party_id,
            resolution=RES_CONFIRMED,
        )
    return updated


def _auto_release(contract: Contract, event: AutoReleaseFired, now_ms: int) -> Contract:
    if contract.escrow_status != LOCKED:
        raise _illegal(contract, event)
    if contract.auto_release_deadline is None or now_ms < contract.auto_release_deadline:
        raise IllegalTransition(
            f"auto-release for contract {contract.id} is not due until {to_iso(contract.auto_release_deadline)}",
            contract_id=contract.id,
        )
    return _resolve(
        contract,
        status=RELEASED,
        confirmation_status=CONF_CONFIRMED,
        now_ms=now_ms,
        resolved_by=SYSTEM_ACTOR,
        resolution=RES_AUTO_RELEASE,
    )


def _dispute(contract: Contract, event: Dispute, now_ms: int) -> Contract:
    if event.party_id not in contract.parties:
        raise Unauthorized(f"{event.party_id} is not a party to contract {contract.id}", contract_id=contract.id)
    if not (event.reason or "").strip():
        raise ValidationError("dispute reason must be non-empty", contract_id=contract.id)
    if contract.escrow_status != LOCKED:
        raise _illegal(contract, event)
    return contract.copy(
        escrow_status=DISPUTED,
        confirmation_status=CONF_DISPUTED,
        dispute_reason=event.reason.strip(),
        disputed_by=event.party_id,
        auto_release_deadline=None,
    )


def _admin(contract: Contract, event, now_ms: int) -> Contract:
    if not (event.admin_id or "").strip():
        raise Unauthorized("admin identity required", contract_id=contract.id)
    if contract.escrow_status not in ADMIN_SOURCE_STATES:
        raise _illegal(contract, event)
    if isinstance(event, AdminRelease):
        return _resolve(
            contract,
            status=RELEASED,
            confirmation_status=CONF_CONFIRMED,
            now_ms=now_ms,
            resolved_by=event.admin_id,
            resolution=RES_ADMIN_RELEASE,
            admin_override=True,
        )
    # Refund leaves delivery acceptance as it was (pending or disputed)
    return _resolve(
        contract,
        status=REFUNDED,
        confirmation_status=contract.confirmation_status,
        now_ms=now_ms,
        resolved_by=event.admin_id,
        resolution=RES_ADMIN_REFUND,
        admin_override=True,
    )


_HANDLERS = {
    FundConfirmed: _fund,
    Confirm: _confirm,
    AutoReleaseFired: _auto_release,
    Dispute: _dispute,
    AdminRelease: _admin,
    AdminRefund: _admin,
}


def invariant_violations(contract: Contract) -> List[str]:
    out = []
    if (contract.escrow_status, contract.confirmation_status) not in LEGAL_COMBINATIONS:
        out.append(f"illegal status pair {contract.escrow_status}/{contract.confirmation_status}")
    if (contract.resolved_at is not None) != (contract.escrow_status in TERMINAL_STATUSES):
        out.append("resolved_at must be set iff released or refunded")
    if not set(contract.confirmed_by).issubset(set(contract.parties)):
        out.append("confirmed_by must be a subset of parties")
    if (contract.auto_release_deadline is not None) != (contract.escrow_status == LOCKED):
        out.append("auto_release_deadline must be set iff locked")
    if contract.escrow_status == DISPUTED and not contract.dispute_reason:
        out.append("disputed contract needs a dispute_reason")
    if contract.dispute_reason and contract.escrow_status != DISPUTED:
        out.append("dispute_reason must only be set while disputed")
    return out


def transition(contract: Contract, event, now_ms: int) -> Contract:
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise IllegalTransition(f"unknown event {type(event).__name__}", contract_id=contract.id)
    result = handler(contract, event, int(now_ms))
    problems = invariant_violations(result)
    if problems:
        raise IllegalTransition(
            f"transition {event.name} would break invariants: {'; '.join(problems)}",
            contract_id=contract.id,
        )
    return result
