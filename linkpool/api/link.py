from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from linkpool.config import GeneralSettings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Link"])


class ConsumerDirectory(Protocol):
    async def is_running(self, consumer_id: str) -> bool: ...


class AllowAllConsumers:
    """Treats every consumer id as an existing, running live code."""

    async def is_running(self, consumer_id: str) -> bool:
        return True


def _general_settings(request: Request) -> GeneralSettings:
    app_config = getattr(request.app.state, "app_config", None)
    return getattr(app_config, "general_settings", None) or GeneralSettings()


@router.get("/api/link", include_in_schema=False)
async def follow_link(request: Request, id: str | None = None) -> RedirectResponse:
    settings = _general_settings(request)
    error_page = RedirectResponse(settings.error_page_url, status_code=302)
    if not id:
        return error_page

    try:
        directory: ConsumerDirectory = getattr(request.app.state, "consumer_directory", None) or AllowAllConsumers()
        if not await directory.is_running(id):
            logger.info("link for unknown or stopped consumer %s", id)
            return error_page

        bindings = request.app.state.binding_manager
        selection = await bindings.select_for_consumer(id)
    except Exception:
        logger.exception("domain selection failed for %s", id)
        return error_page

    if selection is None:
        return error_page

    landing_url = f"{selection.base_url}{settings.landing_path}?{urlencode({'id': id})}"
    return RedirectResponse(landing_url, status_code=302)
