from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import List, Optional

# escrow_status
PENDING = "pending"
LOCKED = "locked"
RELEASED = "released"
REFUNDED = "refunded"
DISPUTED = "disputed"

ESCROW_STATUSES = (PENDING, LOCKED, RELEASED, REFUNDED, DISPUTED)
TERMINAL_STATUSES = (RELEASED, REFUNDED)

# confirmation_status
CONF_PENDING = "pending"
CONF_CONFIRMED = "confirmed"
CONF_DISPUTED = "disputed"

# (escrow_status, confirmation_status) pairs a stored contract may hold
LEGAL_COMBINATIONS = {
    (PENDING, CONF_PENDING),
    (LOCKED, CONF_PENDING),
    (DISPUTED, CONF_DISPUTED),
    (RELEASED, CONF_CONFIRMED),
    (REFUNDED, CONF_PENDING),
    (REFUNDED, CONF_DISPUTED),
}

# kind: what the escrow is holding funds for
KINDS = ("material_order", "labor_contract", "machinery_rental", "general")

# resolution: how a contract reached a terminal state
RES_CONFIRMED = "confirmed"
RES_AUTO_RELEASE = "auto_release"
RES_ADMIN_RELEASE = "admin_release"
RES_ADMIN_REFUND = "admin_refund"

SYSTEM_ACTOR = "system"


@dataclass
class Contract:
    # Identity
    id: str = ""
    # parties[0] is the payer; everyone else must confirm delivery
    parties: List[str] = field(default_factory=list)

    # Money (immutable after funding)
    amount: Decimal = Decimal("0")
    currency: str = "USD"

    # State
    escrow_status: str = PENDING
    confirmation_status: str = CONF_PENDING
    confirmed_by: List[str] = field(default_factory=list)

    ledger_tx_id: Optional[str] = None
    dispute_reason: Optional[str] = None
    disputed_by: Optional[str] = None
    auto_release_deadline: Optional[int] = None

    # Lifecycle timestamps (epoch ms)
    created_at: Optional[int] = None
    funded_at: Optional[int] = None
    resolved_at: Optional[int] = None

    # Audit
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    admin_override: bool = False

    # Agreement metadata
    kind: str = "general"
    reference: Optional[str] = None
    terms: str = ""
    contract_hash: str = ""

    # CAS counter, bumped by the store on every successful swap
    version: int = 0

    @property
    def payer(self) -> Optional[str]:
        return self.parties[0] if self.parties else None

    def copy(self, **changes) -> "Contract":
        """Detached copy; list fields are duplicated so snapshots never alias."""
        changes.setdefault("parties", list(self.parties))
        changes.setdefault("confirmed_by", list(self.confirmed_by))
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parties": list(self.parties),
            "amount": str(self.amount),
            "currency": self.currency,
            "escrow_status": self.escrow_status,
            "confirmation_status": self.confirmation_status,
            "confirmed_by": list(self.confirmed_by),
            "ledger_tx_id": self.ledger_tx_id,
            "dispute_reason": self.dispute_reason,
            "disputed_by": self.disputed_by,
            "auto_release_deadline": self.auto_release_deadline,
            "created_at": self.created_at,
            "funded_at": self.funded_at,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
            "resolution": self.resolution,
            "admin_override": bool(self.admin_override),
            "kind": self.kind,
            "reference": self.reference,
            "terms": self.terms,
            "contract_hash": self.contract_hash,
            "version": int(self.version),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Contract":
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in (data or {}).items() if k in known}
        kwargs["amount"] = Decimal(str(kwargs.get("amount", "0")))
        kwargs["parties"] = list(kwargs.get("parties") or [])
        kwargs["confirmed_by"] = list(kwargs.get("confirmed_by") or [])
        kwargs["version"] = int(kwargs.get("version") or 0)
        return cls(**kwargs)
