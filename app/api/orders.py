from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import get_dispatcher
from app.core.config import settings
from app.services.dispatcher import Dispatcher

router = APIRouter(prefix="/api/{family}", tags=["orders"])


class OrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product: str
    minutes: int = 60
    email: str = Field(default="", alias="userEmail")
    promo: str = ""


class OrderResponse(BaseModel):
    ok: bool
    id: str | None
    amount: int | None
    currency: str
    product: str
    minutes: int


@router.post("/order", response_model=OrderResponse)
def create_order(req: OrderRequest, dispatcher: Dispatcher = Depends(get_dispatcher)) -> OrderResponse:
    order = dispatcher.create_order(
        req.product,
        req.minutes,
        email=req.email,
        promo=req.promo,
        guard=settings.webhook_guard,
    )
    return OrderResponse(ok=True, **order)


class MintRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str | None = Field(default=None, alias="paymentId")
    razorpay_payment_id: str | None = Field(default=None, alias="razorpayPaymentId")
    order_id: str | None = Field(default=None, alias="orderId")
    signature: str | None = None
    product: str
    minutes: int = 60
    email: str = ""
    promo: str = ""


class MintResponse(BaseModel):
    ok: bool
    token: str


@router.post("/mint", response_model=MintResponse)
def mint_token(req: MintRequest, dispatcher: Dispatcher = Depends(get_dispatcher)) -> MintResponse:
    token = dispatcher.mint(
        payment_ref=req.payment_id or req.razorpay_payment_id or "",
        product=req.product,
        minutes=req.minutes,
        email=req.email,
        promo=req.promo,
        order_id=req.order_id,
        checkout_signature=req.signature,
    )
    return MintResponse(ok=True, token=token)


_RUN_SCRIPT = """#!/usr/bin/env bash
set -euo pipefail

echo "[*] Redeeming token with backend..."
if [ -z "${{ORDER_TOKEN:-}}" ]; then
  echo "[!] ORDER_TOKEN not set"; exit 1
fi

resp=$(curl -sS -X POST "{base}/api/{family}/redeem" \\
  -H "Content-Type: application/json" \\
  -d "{{\\"token\\":\\"${{ORDER_TOKEN}}\\"}}" || true)

echo "$resp"

echo "$resp" | grep -q '"queued":true' && \\
  echo "[ok] Token accepted. Your {family} job has been queued." || \\
  echo "[!] Unexpected response above."
"""


@router.get("/run.sh", response_class=PlainTextResponse)
def run_script(dispatcher: Dispatcher = Depends(get_dispatcher)) -> PlainTextResponse:
    script = _RUN_SCRIPT.format(base=settings.public_base.rstrip("/"), family=dispatcher.name)
    return PlainTextResponse(script, headers={"Cache-Control": "no-store"})
