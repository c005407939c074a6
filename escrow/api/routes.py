from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from escrow.api.auth import require_api_key
from escrow.api.schemas import (
    ConfirmRequest,
    ContractView,
    CreateContractRequest,
    DisputeRequest,
    ReleaseTimeView,
)
from escrow.core.runtime import get_engine
from escrow.settings import settings
from escrow.store.models import Contract

router = APIRouter(prefix="/contracts", tags=["contracts"], dependencies=[Depends(require_api_key)])


def to_view(contract: Contract) -> ContractView:
    return ContractView.model_validate(contract.to_dict())


@router.post("", response_model=ContractView, status_code=201)
async def create_contract(req: CreateContractRequest, engine=Depends(get_engine)):
    """Create the escrow record and fund it through the payment rail."""
    contract = await run_in_threadpool(
        engine.create_and_fund,
        req.parties,
        req.amount,
        req.currency or settings.DEFAULT_CURRENCY,
        kind=req.kind,
        reference=req.reference,
        terms=req.terms,
    )
    return to_view(contract)


@router.get("", response_model=List[ContractView])
def list_contracts(
    party: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    engine=Depends(get_engine),
):
    if bool(party) == bool(status):
        raise HTTPException(status_code=422, detail="pass exactly one of 'party' or 'status'")
    rows = engine.list_by_party(party) if party else engine.list_by_status(status)
    return [to_view(c) for c in rows]


@router.get("/{contract_id}", response_model=ContractView)
def get_contract(contract_id: str, engine=Depends(get_engine)):
    return to_view(engine.get(contract_id))


@router.get("/{contract_id}/release-time", response_model=ReleaseTimeView)
def get_release_time(contract_id: str, engine=Depends(get_engine)):
    c = engine.get(contract_id)
    return ReleaseTimeView(
        id=c.id,
        escrow_status=c.escrow_status,
        auto_release_deadline=c.auto_release_deadline,
        remaining_hours=engine.remaining_release_hours(contract_id),
    )


@router.post("/{contract_id}/fund", response_model=ContractView)
async def retry_funding(contract_id: str, engine=Depends(get_engine)):
    """Retry funding for a contract left pending by a payment rail failure."""
    return to_view(await run_in_threadpool(engine.retry_funding, contract_id))


@router.post("/{contract_id}/confirm", response_model=ContractView)
async def confirm_delivery(contract_id: str, req: ConfirmRequest, engine=Depends(get_engine)):
    return to_view(await run_in_threadpool(engine.confirm_delivery, contract_id, req.party_id))


@router.post("/{contract_id}/dispute", response_model=ContractView)
async def raise_dispute(contract_id: str, req: DisputeRequest, engine=Depends(get_engine)):
    return to_view(await run_in_threadpool(engine.raise_dispute, contract_id, req.party_id, req.reason))
