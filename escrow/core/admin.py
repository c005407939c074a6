"""
Admin Override Gate: the privileged path that forces a terminal state on a
locked or disputed contract. Same transition table and CAS discipline as
every other event; only the caller role and the reachable source states
differ. Rejections are escalated to the caller with the reason.
"""
from typing import Iterable

import escrow.observability.metrics as metrics
from escrow.core.errors import IllegalTransition, Unauthorized
from escrow.core.state_machine import AdminRefund, AdminRelease
from escrow.events import models as ev
from escrow.observability.logging import log
from escrow.store.models import RELEASED, Contract


class AdminOverrideGate:
    def __init__(self, engine, admin_ids: Iterable[str]):
        self.engine = engine
        self.admin_ids = {a for a in admin_ids if a}

    def is_admin(self, admin_id: str) -> bool:
        return bool(admin_id) and admin_id in self.admin_ids

    def force_release(self, contract_id: str, admin_id: str) -> Contract:
        return self._override(contract_id, admin_id, AdminRelease(admin_id=admin_id))

    def force_refund(self, contract_id: str, admin_id: str) -> Contract:
        return self._override(contract_id, admin_id, AdminRefund(admin_id=admin_id))

    def _override(self, contract_id: str, admin_id: str, event) -> Contract:
        if not self.is_admin(admin_id):
            log(event="admin_override_rejected", level="warning", contractId=contract_id,
                adminId=admin_id or "", action=event.name, cause="not_admin")
            raise Unauthorized(f"{admin_id or 'anonymous'} is not an escrow admin", contract_id=contract_id)

        try:
            before, after = self.engine.apply(contract_id, event)
        except IllegalTransition as e:
            metrics.increment("admin_rejected")
            log(event="admin_override_rejected", level="warning", contractId=contract_id,
                adminId=admin_id, action=event.name, why=e.message)
            raise

        # The contract may still have been locked with a live timer
        self.engine.scheduler.cancel(contract_id)

        metrics.increment(f"{after.escrow_status}:{after.resolution}")
        log(event="admin_override", contractId=contract_id, adminId=admin_id,
            action=event.name, fromStatus=before.escrow_status, toStatus=after.escrow_status)
        event_type = ev.RELEASED if after.escrow_status == RELEASED else ev.REFUNDED
        self.engine.publish(event_type, after, actor_id=admin_id, resolution=after.resolution,
                            admin_override=True, previous_status=before.escrow_status,
                            dispute_reason=before.dispute_reason)
        return after
