"""
Escrow Engine
-------------
Facade used by the API, the RQ worker and admin tooling. It wires together:

- the Ledger Store (compare-and-swap on a per-contract version),
- the pure state machine (escrow.core.state_machine.transition),
- the Auto-Release Scheduler (in-process or RQ),
- the payment rail and the Event Dispatcher.

Concurrency model: every mutation is read-snapshot -> transition -> CAS.
A CAS miss re-reads and re-evaluates the transition, so the loser of a race
sees IllegalTransition / StaleConfirmation computed from the winner's state.
Nothing is locked across contracts.
"""
import hashlib
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, List, Optional, Tuple

import escrow.observability.metrics as metrics
from escrow.core.admin import AdminOverrideGate
from escrow.core.disputes import DisputeResolver
from escrow.core.errors import (
    ConcurrencyConflict,
    IllegalTransition,
    LedgerUnavailable,
    NotFound,
    ValidationError,
)
from escrow.core.state_machine import AutoReleaseFired, Confirm, FundConfirmed, transition
from escrow.events import models as ev
from escrow.events.dispatcher import build_event
from escrow.observability.logging import log
from escrow.store.models import (
    ESCROW_STATUSES,
    KINDS,
    LOCKED,
    PENDING,
    RELEASED,
    SYSTEM_ACTOR,
    Contract,
)
from escrow.utils.time import hours_until, now_ms, to_iso

# fire_auto_release outcomes
FIRE_RELEASED = "released"
FIRE_DISCARDED = "discarded"
FIRE_REARMED = "rearmed"


def build_contract_content(contract: Contract) -> str:
    """Canonical agreement text; its SHA-256 is stored as contract_hash."""
    return "\n".join([
        "SMART CONTRACT AGREEMENT",
        f"Contract ID: {contract.id}",
        f"Kind: {contract.kind}",
        f"Reference: {contract.reference or 'N/A'}",
        f"Parties: {', '.join(contract.parties)}",
        f"Amount: {contract.amount} {contract.currency}",
        f"Terms: {contract.terms or 'Standard terms apply'}",
        f"Generated: {to_iso(contract.created_at)}",
    ])


def hash_contract(contract: Contract) -> str:
    return hashlib.sha256(build_contract_content(contract).encode("utf-8")).hexdigest()


def _validate_parties(parties: Iterable[str]) -> List[str]:
    cleaned = [str(p).strip() for p in (parties or [])]
    if not cleaned:
        raise ValidationError("parties must not be empty")
    if any(not p for p in cleaned):
        raise ValidationError("party identifiers must be non-empty")
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError("parties must not contain duplicates")
    if len(cleaned) < 2:
        raise ValidationError("a contract needs a payer and at least one payee")
    return cleaned


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"amount {amount!r} is not a number")
    if not value.is_finite() or value <= 0:
        raise ValidationError("amount must be positive")
    return value


def _validate_currency(currency: str) -> str:
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"currency {currency!r} must be a 3-letter code")
    return code


class EscrowEngine:
    def __init__(self, store, rail, dispatcher, scheduler, *,
                 clock: Callable[[], int] = now_ms,
                 admin_ids: Optional[Iterable[str]] = None,
                 window_ms: int = 72 * 3600 * 1000,
                 cas_max_retries: int = 8):
        self.store = store
        self.rail = rail
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.clock = clock
        self.window_ms = int(window_ms)
        self.cas_max_retries = max(0, int(cas_max_retries))
        self.disputes = DisputeResolver(self)
        self.admin = AdminOverrideGate(self, admin_ids or ())
        self.scheduler.bind(self.fire_auto_release)

    # ------------------------------------------------------------------
    # CAS plumbing shared by every transition
    # ------------------------------------------------------------------
    def apply(self, contract_id: str, event) -> Tuple[Contract, Contract]:
        """
        Apply one event through the transition table and CAS.
        Returns (before, after); before == after means the event was a no-op.
        """
        t0 = time.monotonic()
        for attempt in range(self.cas_max_retries + 1):
            before = self.store.get(contract_id)
            after = transition(before, event, self.clock())
            if after == before:
                return before, before
            if self.store.compare_and_swap(contract_id, before.version, after):
                metrics.record_transition_latency(int((time.monotonic() - t0) * 1000))
                return before, after
            metrics.increment("cas_conflicts")
            log(event="cas_conflict", contractId=contract_id, transition=event.name,
                attempt=attempt + 1, expectedVersion=before.version)
        raise ConcurrencyConflict(
            f"contract {contract_id} kept changing; gave up after {self.cas_max_retries + 1} attempts",
            contract_id=contract_id,
        )

    def publish(self, event_type: str, contract: Contract, actor_id: Optional[str] = None, **detail) -> None:
        """Fire-and-forget; a dispatcher failure never undoes the transition."""
        try:
            self.dispatcher.publish(build_event(event_type, contract, actor_id=actor_id,
                                                timestamp=self.clock(), **detail))
        except Exception as e:
            log(event="event_publish_failed", level="error", type=event_type, contractId=contract.id,
                errorType=type(e).__name__, error=str(e)[:300])

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------
    def create_and_fund(self, parties: Iterable[str], amount, currency: str, *,
                        kind: str = "general", reference: Optional[str] = None, terms: str = "") -> Contract:
        if kind not in KINDS:
            raise ValidationError(f"kind must be one of {', '.join(KINDS)}")
        contract = Contract(
            id=f"contract_{uuid.uuid4().hex}",
            parties=_validate_parties(parties),
            amount=_validate_amount(amount),
            currency=_validate_currency(currency),
            kind=kind,
            reference=(reference or None),
            terms=terms or "",
            created_at=self.clock(),
        )
        contract.contract_hash = hash_contract(contract)
        stored = self.store.put(contract)
        log(event="contract_created", contractId=stored.id, kind=stored.kind,
            parties=len(stored.parties), amount=str(stored.amount), currency=stored.currency)
        return self._fund(stored)

    def retry_funding(self, contract_id: str) -> Contract:
        contract = self.store.get(contract_id)
        if contract.escrow_status != PENDING:
            raise IllegalTransition(
                f"contract {contract_id} is already {contract.escrow_status}; nothing to fund",
                contract_id=contract_id,
            )
        return self._fund(contract)

    def _fund(self, contract: Contract) -> Contract:
        try:
            tx_id = self.rail.fund(contract.id, contract.amount, contract.currency, contract.contract_hash)
        except LedgerUnavailable as e:
            if e.contract_id is None:
                e.contract_id = contract.id
            metrics.increment("funding_failed")
            log(event="funding_failed", level="warning", contractId=contract.id, error=e.message)
            raise
        except Exception as e:
            metrics.increment("funding_failed")
            log(event="funding_failed", level="warning", contractId=contract.id,
                errorType=type(e).__name__, error=str(e)[:300])
            raise LedgerUnavailable(f"payment rail failed: {type(e).__name__}", contract_id=contract.id) from e

        _, after = self.apply(contract.id, FundConfirmed(tx_id=tx_id, window_ms=self.window_ms))
        self.scheduler.arm(after.id, after.auto_release_deadline)
        metrics.increment("funded")
        log(event="contract_funded", contractId=after.id, txId=after.ledger_tx_id,
            deadline=after.auto_release_deadline)
        self.publish(ev.FUNDED, after, actor_id=after.payer, ledger_tx_id=after.ledger_tx_id,
                     auto_release_deadline=after.auto_release_deadline)
        return after

    # ------------------------------------------------------------------
    # Party actions
    # ------------------------------------------------------------------
    def confirm_delivery(self, contract_id: str, party_id: str) -> Contract:
        before, after = self.apply(contract_id, Confirm(party_id=party_id))
        if before == after:
            log(event="confirmation_repeat", contractId=contract_id, partyId=party_id)
            return after

        metrics.increment("confirmations")
        log(event="confirmation_recorded", contractId=contract_id, partyId=party_id,
            confirmed=len(after.confirmed_by), status=after.escrow_status)
        self.publish(ev.CONFIRMED, after, actor_id=party_id)
        if after.escrow_status == RELEASED:
            self.scheduler.cancel(contract_id)
            metrics.increment(f"released:{after.resolution}")
            log(event="contract_released", contractId=contract_id, resolution=after.resolution,
                resolvedBy=after.resolved_by)
            self.publish(ev.RELEASED, after, actor_id=party_id, resolution=after.resolution)
        return after

    def raise_dispute(self, contract_id: str, party_id: str, reason: str) -> Contract:
        return self.disputes.raise_dispute(contract_id, party_id, reason)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def force_release(self, contract_id: str, admin_id: str) -> Contract:
        return self.admin.force_release(contract_id, admin_id)

    def force_refund(self, contract_id: str, admin_id: str) -> Contract:
        return self.admin.force_refund(contract_id, admin_id)

    # ------------------------------------------------------------------
    # Timer firing + recovery
    # ------------------------------------------------------------------
    def fire_auto_release(self, contract_id: str) -> str:
        try:
            _, after = self.apply(contract_id, AutoReleaseFired())
        except NotFound:
            log(event="auto_release_discarded", contractId=contract_id, cause="not_found")
            return FIRE_DISCARDED
        except ConcurrencyConflict:
            self.scheduler.arm(contract_id, self.clock())
            log(event="auto_release_rearmed", level="warning", contractId=contract_id, cause="contention")
            return FIRE_REARMED
        except IllegalTransition as e:
            current = self.store.get(contract_id)
            if current.escrow_status == LOCKED and current.auto_release_deadline is not None:
                # Fired early (clock skew or a stale job): wait for the real deadline
                self.scheduler.arm(contract_id, current.auto_release_deadline)
                log(event="auto_release_rearmed", contractId=contract_id,
                    deadline=current.auto_release_deadline)
                return FIRE_REARMED
            metrics.increment("auto_release_discarded")
            log(event="auto_release_discarded", contractId=contract_id,
                status=current.escrow_status, why=e.message)
            return FIRE_DISCARDED

        metrics.increment(f"released:{after.resolution}")
        log(event="contract_released", contractId=contract_id, resolution=after.resolution,
            resolvedBy=SYSTEM_ACTOR)
        self.publish(ev.RELEASED, after, actor_id=SYSTEM_ACTOR, resolution=after.resolution)
        return FIRE_RELEASED

    def recover(self) -> dict:
        """
        Rebuild the timer set from persisted deadlines: re-arm future ones,
        fire the ones that passed while the process was down.
        """
        now = self.clock()
        armed, fired = 0, 0
        for contract in self.store.list_by_status(LOCKED):
            deadline = contract.auto_release_deadline
            if deadline is None:
                continue
            if deadline <= now:
                self.fire_auto_release(contract.id)
                fired += 1
            else:
                self.scheduler.arm(contract.id, deadline)
                armed += 1
        log(event="recovery_scan", armed=armed, fired=fired)
        return {"armed": armed, "fired": fired}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, contract_id: str) -> Contract:
        return self.store.get(contract_id)

    def list_by_party(self, party_id: str) -> List[Contract]:
        return self.store.list_by_party(party_id)

    def list_by_status(self, status: str) -> List[Contract]:
        if status not in ESCROW_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(ESCROW_STATUSES)}")
        return self.store.list_by_status(status)

    def remaining_release_hours(self, contract_id: str) -> int:
        contract = self.store.get(contract_id)
        if contract.escrow_status != LOCKED:
            return 0
        return hours_until(contract.auto_release_deadline, self.clock())


