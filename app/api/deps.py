from fastapi import Depends, Header, HTTPException

from app.services.auth import key_allowed, supplied_worker_key
from app.services.dispatcher import Dispatcher
from app.services.errors import Unauthorized
from app.services.registry import get_dispatchers


def get_dispatcher(family: str) -> Dispatcher:
    dispatcher = get_dispatchers().get(family.strip().lower())
    if dispatcher is None:
        raise HTTPException(status_code=404, detail="Unknown product family")
    return dispatcher


def require_worker(
    dispatcher: Dispatcher = Depends(get_dispatcher),
    authorization: str | None = Header(default=None),
    x_provider_key: str | None = Header(default=None),
) -> Dispatcher:
    supplied = supplied_worker_key(authorization, x_provider_key)
    if not key_allowed(supplied, dispatcher.family.worker_keys):
        raise Unauthorized()
    return dispatcher
