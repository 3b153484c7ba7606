"""FastAPI error handler registration for the dispatch error taxonomy."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.errors import UPSTREAM, DispatchError

logger = logging.getLogger(__name__)


async def _dispatch_error(request: Request, exc: DispatchError) -> JSONResponse:
    if exc.category == UPSTREAM:
        logger.warning("%s %s -> %s (%s)", request.method, request.url.path, exc.kind, exc.detail or "")
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def register_error_handlers(app: FastAPI) -> None:
    """Render every DispatchError as ``{"ok": false, "error": kind, ...}``."""
    app.add_exception_handler(DispatchError, _dispatch_error)  # type: ignore[arg-type]
