from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Family = Literal["compute", "gpu", "storage"]

QUEUED = "queued"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

TERMINAL_STATUSES = {COMPLETED, FAILED}
WORKER_STATUSES = {RUNNING, COMPLETED, FAILED}  # what a worker may report
NOTIFY_STATUSES = {QUEUED, RUNNING, COMPLETED, FAILED}


class OrderClaims(BaseModel):
    """Order token payload; field names are the compact wire keys."""

    model_config = ConfigDict(extra="allow")

    v: int = 1
    kind: Family
    product: str
    minutes: int = Field(ge=1)
    email: str = ""
    pay: str = ""
    promo: Optional[str] = None
    iat: int
    exp: int


class Job(BaseModel):
    id: str
    kind: Family
    sku: str
    minutes: int
    email: str = ""
    payment_ref: str = ""
    promo: Optional[str] = None
    size_gi: Optional[int] = None
    spec: Optional[str] = None  # out-of-band deployment spec supplied at redeem
    queued_at: int  # ms


class PickedJob(BaseModel):
    id: str
    kind: Family
    sku: str
    minutes: int
    email: str = ""
    size_gi: Optional[int] = None
    spec: Optional[str] = None
    picked_at: int


class Capabilities(BaseModel):
    skus: list[str] = Field(default_factory=list)
    kinds: list[str] = Field(default_factory=list)


class StatusRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    kind: Optional[str] = None
    sku: Optional[str] = None
    minutes: Optional[int] = None
    email: Optional[str] = None
    message: str = ""
    queued_at: Optional[int] = None
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    updated_at: Optional[int] = None
    log_url: Optional[str] = None
    progress: Optional[float] = None
    outputs: Optional[dict[str, Any]] = None
