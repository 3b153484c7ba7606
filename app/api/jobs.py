from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_dispatcher, require_worker
from app.models.job import Capabilities, PickedJob, StatusRecord
from app.services.auth import fingerprint, key_allowed, supplied_worker_key
from app.services.dispatcher import Dispatcher

router = APIRouter(prefix="/api/{family}", tags=["jobs"])


class RedeemRequest(BaseModel):
    token: str
    spec: str | None = None


class RedeemResponse(BaseModel):
    ok: bool
    queued: bool
    id: str


@router.post("/redeem", response_model=RedeemResponse)
def redeem(req: RedeemRequest, dispatcher: Dispatcher = Depends(get_dispatcher)) -> RedeemResponse:
    job_id = dispatcher.redeem(req.token, spec=req.spec)
    return RedeemResponse(ok=True, queued=True, id=job_id)


class PickRequest(BaseModel):
    caps: Capabilities = Field(default_factory=Capabilities)


class PickResponse(BaseModel):
    ok: bool
    job: PickedJob | None


@router.post("/pick", response_model=PickResponse)
def pick(req: PickRequest | None = None, dispatcher: Dispatcher = Depends(require_worker)) -> PickResponse:
    caps = req.caps if req else Capabilities()
    return PickResponse(ok=True, job=dispatcher.pick(caps))


class ProgressRequest(BaseModel):
    id: str
    status: str = "running"
    message: str = ""
    progress: float | None = None
    outputs: dict[str, Any] | None = None


class UpdateResponse(BaseModel):
    ok: bool
    id: str
    status: str


@router.post("/progress", response_model=UpdateResponse)
def progress(req: ProgressRequest, dispatcher: Dispatcher = Depends(require_worker)) -> UpdateResponse:
    record = dispatcher.progress(
        req.id,
        status=req.status,
        message=req.message,
        progress=req.progress,
        outputs=req.outputs,
    )
    return UpdateResponse(ok=True, id=req.id, status=record["status"])


class CompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    success: bool = True
    message: str = ""
    log_url: str | None = Field(default=None, alias="logUrl")


@router.post("/complete", response_model=UpdateResponse)
def complete(req: CompleteRequest, dispatcher: Dispatcher = Depends(require_worker)) -> UpdateResponse:
    record = dispatcher.complete(req.id, success=req.success, message=req.message, log_url=req.log_url)
    return UpdateResponse(ok=True, id=req.id, status=record["status"])


class StatusResponse(BaseModel):
    ok: bool
    job: StatusRecord


@router.get("/status", response_model=StatusResponse)
def get_status(id: str = Query(..., min_length=1), dispatcher: Dispatcher = Depends(get_dispatcher)) -> StatusResponse:
    record = dispatcher.status(id.strip())
    return StatusResponse(ok=True, job=StatusRecord.model_validate(record))


@router.get("/queue")
def peek_queue(n: int = Query(default=5, ge=0, le=50), dispatcher: Dispatcher = Depends(require_worker)):
    """Queue length plus the next ``n`` jobs in serving order. Does not dequeue."""
    peek = dispatcher.peek(n)
    return {
        "ok": True,
        "family": dispatcher.name,
        "queue_key": dispatcher.queue.key,
        "length": peek["length"],
        "next": peek["next"],
    }


@router.get("/debug")
def debug_auth(
    dispatcher: Dispatcher = Depends(get_dispatcher),
    authorization: str | None = Header(default=None),
    x_provider_key: str | None = Header(default=None),
):
    """
    Worker-credential diagnostics. Only derived values are returned
    (counts, lengths, booleans, hash prefixes), never the secrets.
    """
    keys = dispatcher.family.worker_keys
    supplied = supplied_worker_key(authorization, x_provider_key)
    return {
        "ok": True,
        "family": dispatcher.name,
        "has_keys": bool(keys),
        "key_count": len(keys),
        "key_fingerprints": [fingerprint(k) for k in keys],
        "supplied_len": len(supplied),
        "supplied_fingerprint": fingerprint(supplied),
        "equal": key_allowed(supplied, keys),
        "token_secret_set": bool(dispatcher.family.token_secret),
    }
