from typing import List

from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool

from escrow.api.auth import require_admin
from escrow.api.routes import to_view
from escrow.api.schemas import AdminActionRequest, ContractView
from escrow.core.runtime import get_engine
from escrow.store.models import DISPUTED
import escrow.observability.metrics as metrics

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/contracts", response_model=List[ContractView])
def list_contracts_for_review(status: str = Query(default=DISPUTED), engine=Depends(get_engine),
                              _=Depends(require_admin)):
    """Queue of contracts awaiting an admin decision (disputed by default)."""
    return [to_view(c) for c in engine.list_by_status(status)]


@router.post("/contracts/{contract_id}/release", response_model=ContractView)
async def force_release(contract_id: str, req: AdminActionRequest, engine=Depends(get_engine),
                        _=Depends(require_admin)):
    return to_view(await run_in_threadpool(engine.force_release, contract_id, req.admin_id))


@router.post("/contracts/{contract_id}/refund", response_model=ContractView)
async def force_refund(contract_id: str, req: AdminActionRequest, engine=Depends(get_engine),
                       _=Depends(require_admin)):
    return to_view(await run_in_threadpool(engine.force_refund, contract_id, req.admin_id))


@router.post("/recover")
async def run_recovery(engine=Depends(get_engine), _=Depends(require_admin)):
    """Re-run the auto-release recovery scan (e.g. after restoring Redis)."""
    return await run_in_threadpool(engine.recover)


@router.get("/metrics")
def get_metrics(engine=Depends(get_engine), _=Depends(require_admin)):
    """Counters, transition latency percentiles and per-status contract counts."""
    return metrics.get_metrics_snapshot(engine.store)
