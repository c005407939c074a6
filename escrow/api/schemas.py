from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field

Kind = Literal["material_order", "labor_contract", "machinery_rental", "general"]

class CreateContractRequest(BaseModel):
    # parties[0] is the payer
    parties: List[str] = Field(min_length=1)
    # Strings keep the exact decimal value; plain JSON numbers are accepted too
    amount: Union[str, int, float]
    currency: Optional[str] = None
    kind: Kind = "general"
    reference: Optional[str] = None
    terms: str = ""

class ConfirmRequest(BaseModel):
    party_id: str

class DisputeRequest(BaseModel):
    party_id: str
    reason: str

class AdminActionRequest(BaseModel):
    admin_id: str

class ContractView(BaseModel):
    id: str
    parties: List[str]
    amount: str
    currency: str
    escrow_status: str
    confirmation_status: str
    confirmed_by: List[str] = Field(default_factory=list)
    ledger_tx_id: Optional[str] = None
    dispute_reason: Optional[str] = None
    disputed_by: Optional[str] = None
    auto_release_deadline: Optional[int] = None
    created_at: Optional[int] = None
    funded_at: Optional[int] = None
    resolved_at: Optional[int] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    admin_override: bool = False
    kind: str = "general"
    reference: Optional[str] = None
    terms: str = ""
    contract_hash: str = ""
    version: int = 0

class ReleaseTimeView(BaseModel):
    id: str
    escrow_status: str
    auto_release_deadline: Optional[int] = None
    remaining_hours: int = 0
