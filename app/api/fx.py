from fastapi import APIRouter
from pydantic import BaseModel

from app.services.registry import get_fx_cache

router = APIRouter(prefix="/api", tags=["fx"])


class FxResponse(BaseModel):
    rate: float
    cached_at: float


@router.get("/fx", response_model=FxResponse)
def inr_to_usd() -> FxResponse:
    cached = get_fx_cache().get()
    return FxResponse(rate=cached.value, cached_at=cached.timestamp)
