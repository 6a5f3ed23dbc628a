from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    ready_payload = await _readiness_payload(request)
    status = 200 if ready_payload["status"] == "ok" else 503
    payload = {"liveliness": "ok", "readiness": ready_payload}
    return JSONResponse(status_code=status, content=payload)


@router.get("/health/liveliness")
async def liveliness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/readiness")
async def readiness(request: Request) -> JSONResponse:
    payload = await _readiness_payload(request)
    status = 200 if payload["status"] == "ok" else 503
    return JSONResponse(status_code=status, content=payload)


@router.get("/health/domains")
async def domains_health(request: Request) -> JSONResponse:
    handler = getattr(request.app.state, "domain_health_handler", None)
    if handler is None:
        payload = {
            "status": "healthy",
            "timestamp": 0,
            "active_count": 0,
            "total_count": 0,
            "domains": [],
        }
    else:
        payload = await handler.get_health_status()

    status_code = 200 if payload["status"] in {"healthy", "degraded"} else 503
    return JSONResponse(status_code=status_code, content=payload)


async def _readiness_payload(request: Request) -> dict[str, object]:
    checks: dict[str, bool] = {}

    store = getattr(request.app.state, "store", None)
    if store is None:
        checks["store"] = False
    else:
        try:
            checks["store"] = bool(await store.ping())
        except Exception:
            checks["store"] = False

    status = "ok" if all(checks.values()) else "degraded"
    return {"status": status, "checks": checks}
