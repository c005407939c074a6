from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

FUNDED = "funded"
CONFIRMED = "confirmed"
RELEASED = "released"
DISPUTED = "disputed"
REFUNDED = "refunded"

EVENT_TYPES = (FUNDED, CONFIRMED, RELEASED, DISPUTED, REFUNDED)


@dataclass
class LifecycleEvent:
    type: str
    contract_id: str
    amount: str
    currency: str
    timestamp: int
    actor_id: Optional[str] = None
    # Contract version written by the transition this event reports
    version: int = 0
    # Who the notification layer should tell about it
    recipients: List[str] = field(default_factory=list)
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_id(self) -> str:
        """Stable id for idempotent delivery; one per transition and event type."""
        return f"{self.contract_id}:{self.type}:v{self.version}"

    def to_dict(self) -> dict:
        out = asdict(self)
        out["event_id"] = self.event_id
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "LifecycleEvent":
        data = dict(data or {})
        data.pop("event_id", None)
        return cls(**data)
