import logging

from fastapi import FastAPI
from pydantic import BaseModel

from app.api.errors import register_error_handlers
from app.api.fx import router as fx_router
from app.api.jobs import router as jobs_router
from app.api.orders import router as orders_router
from app.api.webhooks import router as webhooks_router
from app.core.config import settings
from app.services.kv import get_store

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Compute Dispatch API", version="0.1.0")
register_error_handlers(app)
app.include_router(webhooks_router)
app.include_router(fx_router)
app.include_router(orders_router)
app.include_router(jobs_router)


class HealthResponse(BaseModel):
    ok: bool
    service: str
    version: str
    store_ok: bool


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    # lightweight store check
    try:
        store_ok = get_store().ping()
    except Exception:
        store_ok = False

    return HealthResponse(ok=True, service="api", version=app.version, store_ok=store_ok)
