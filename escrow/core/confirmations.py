"""
Confirmation Tracker: who has accepted delivery, and whether that is enough
to release funds early.

Quorum is every party except the payer. A single-payee contract needs one
confirmation; a contract with several payees (e.g. multiple labor crews on
one concept) needs all of them. Partial confirmation never releases funds.
"""
from typing import List, Optional

from escrow.core.errors import IllegalTransition, StaleConfirmation, Unauthorized
from escrow.store.models import Contract, LOCKED, PENDING


def payees(contract: Contract) -> List[str]:
    return list(contract.parties[1:])


def outstanding(contract: Contract) -> List[str]:
    """Payees that still have to confirm, in party order."""
    done = set(contract.confirmed_by)
    return [p for p in payees(contract) if p not in done]


def has_quorum(contract: Contract, extra: Optional[str] = None) -> bool:
    required = set(payees(contract))
    if not required:
        return False
    confirmed = set(contract.confirmed_by)
    if extra:
        confirmed.add(extra)
    return required.issubset(confirmed)


def check_confirmation(contract: Contract, party_id: str) -> bool:
    """
    Validate a confirmation attempt against the current snapshot.
    Returns True if it is a repeat (already counted), False if it is new.
    """
    if party_id not in contract.parties:
        raise Unauthorized(f"{party_id} is not a party to contract {contract.id}", contract_id=contract.id)
    if contract.escrow_status == PENDING:
        raise IllegalTransition(f"contract {contract.id} is not funded yet", contract_id=contract.id)
    if contract.escrow_status != LOCKED:
        raise StaleConfirmation(
            f"contract {contract.id} is already {contract.escrow_status}; confirmation had no effect",
            contract_id=contract.id,
        )
    return party_id in contract.confirmed_by


def record_confirmation(contract: Contract, party_id: str) -> Contract:
    """Copy of `contract` with party_id added to confirmed_by (order preserved)."""
    if party_id in contract.confirmed_by:
        return contract.copy()
    return contract.copy(confirmed_by=list(contract.confirmed_by) + [party_id])
