from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.core.config import load_family_configs, settings
from app.services.registry import get_deploy_trigger, get_webhook_verifier
from app.services.webhooks import handle_notification

router = APIRouter(prefix="/api", tags=["webhooks"])


@router.post("/razorpay-webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(default=None),
) -> JSONResponse:
    # raw bytes: the signature covers the body exactly as sent
    raw = await request.body()
    result = await run_in_threadpool(
        handle_notification,
        raw,
        x_razorpay_signature,
        get_webhook_verifier(),
        load_family_configs(settings),
        get_deploy_trigger(),
        settings.promo_flat_off_rupees,
    )
    return JSONResponse(
        status_code=result.status_code,
        content={"ok": True, "result": result.outcome, **result.details},
    )
