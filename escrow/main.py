from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from escrow.api.routes import router
from escrow.api.admin_routes import router as admin_router
from escrow.core.errors import (
    ConcurrencyConflict,
    EscrowError,
    IllegalTransition,
    LedgerUnavailable,
    NotFound,
    Unauthorized,
    ValidationError,
)
from escrow.core.runtime import get_engine
from escrow.observability.logging import log
from escrow.settings import settings

STATUS_BY_ERROR = (
    (NotFound, 404),
    (Unauthorized, 403),
    (ValidationError, 422),
    (IllegalTransition, 409),  # includes StaleConfirmation
    (ConcurrencyConflict, 409),
    (LedgerUnavailable, 503),
)


def status_for(exc: EscrowError) -> int:
    for cls, code in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    # Timer set is derived state: rebuild it from persisted deadlines before serving
    await run_in_threadpool(engine.recover)
    engine.scheduler.start()
    try:
        yield
    finally:
        engine.scheduler.stop()


app = FastAPI(title="Escrow Lifecycle API", lifespan=lifespan)

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError):
    code = status_for(exc)
    log(
        event="request_rejected",
        level="warning" if code < 500 else "error",
        path=request.url.path,
        statusCode=code,
        error=exc.code,
        contractId=exc.contract_id or "",
    )
    return JSONResponse(status_code=code, content=exc.to_dict())
