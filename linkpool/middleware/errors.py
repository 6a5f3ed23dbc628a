from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from linkpool.models.errors import PoolError

logger = logging.getLogger(__name__)


def _serialize_error(exc: PoolError) -> dict[str, object]:
    return {
        "success": False,
        "message": exc.message,
        "error": {
            "type": exc.error_type,
            "code": getattr(exc, "code", None),
            "param": getattr(exc, "param", None),
        },
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PoolError)
    async def pool_error_handler(_: Request, exc: PoolError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("request failed: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content=_serialize_error(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled exception", exc_info=exc)
        pool_error = PoolError()
        return JSONResponse(status_code=pool_error.status_code, content=_serialize_error(pool_error))
