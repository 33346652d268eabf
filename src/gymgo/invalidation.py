from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from typing import Protocol

import httpx

from gymgo.logging_config import log_with_fields
from gymgo.settings import Settings

logger = logging.getLogger("gymgo.invalidation")

# Views that list classes or templates; both change after a generation run.
GENERATION_AFFECTED_VIEWS: tuple[str, ...] = ("/dashboard/classes", "/dashboard/templates")


class ViewInvalidator(Protocol):
    async def invalidate(self, organization_id: uuid.UUID, paths: Sequence[str]) -> None: ...


class NoopViewInvalidator:
    async def invalidate(self, organization_id: uuid.UUID, paths: Sequence[str]) -> None:
        _ = (organization_id, paths)


class WebhookViewInvalidator:
    def __init__(self, *, url: str, timeout_seconds: float) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def invalidate(self, organization_id: uuid.UUID, paths: Sequence[str]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                self.url,
                json={"organization_id": str(organization_id), "paths": list(paths)},
            )
            response.raise_for_status()


def build_view_invalidator(settings: Settings) -> ViewInvalidator:
    if settings.view_invalidation_webhook_url is None:
        return NoopViewInvalidator()

    return WebhookViewInvalidator(
        url=settings.view_invalidation_webhook_url.get_secret_value(),
        timeout_seconds=settings.view_invalidation_timeout_seconds,
    )


async def invalidate_quietly(
    invalidator: ViewInvalidator,
    organization_id: uuid.UUID,
    paths: Sequence[str] = GENERATION_AFFECTED_VIEWS,
) -> bool:
    """Fire the hook; a failure is logged and reported as False, never raised."""
    try:
        await invalidator.invalidate(organization_id, paths)
    except Exception:
        log_with_fields(
            logger,
            logging.WARNING,
            "view invalidation failed",
            organization_id=organization_id,
            paths=",".join(paths),
            exc_info=True,
        )
        return False
    return True
