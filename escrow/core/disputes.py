"""
Dispute Resolver: freezes a locked contract.

Raising a dispute and cancelling the auto-release timer are one logical
operation. raise_dispute() only returns after the scheduler confirmed the
cancel, so "dispute succeeded" always implies "auto-release will not fire".
From `disputed` only the Admin Override Gate can move the contract.
"""
import escrow.observability.metrics as metrics
from escrow.core.errors import Unauthorized, ValidationError
from escrow.core.state_machine import Dispute
from escrow.events import models as ev
from escrow.observability.logging import log
from escrow.store.models import Contract


class DisputeResolver:
    def __init__(self, engine):
        self.engine = engine

    def raise_dispute(self, contract_id: str, party_id: str, reason: str) -> Contract:
        snapshot = self.engine.store.get(contract_id)
        if party_id not in snapshot.parties:
            raise Unauthorized(f"{party_id} is not a party to contract {contract_id}", contract_id=contract_id)
        if not (reason or "").strip():
            raise ValidationError("dispute reason must be non-empty", contract_id=contract_id)

        _, after = self.engine.apply(contract_id, Dispute(party_id=party_id, reason=reason))
        self.engine.scheduler.cancel(contract_id)

        metrics.increment("disputed")
        log(event="dispute_raised", contractId=contract_id, partyId=party_id, reason=after.dispute_reason)
        self.engine.publish(ev.DISPUTED, after, actor_id=party_id, reason=after.dispute_reason)
        return after
