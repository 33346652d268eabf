from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymgo.db.models import Organization
from gymgo.db.repos.base import BaseRepository


class OrganizationRepository(BaseRepository[Organization]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Organization)

    async def get_timezone(self, organization_id: uuid.UUID) -> str | None:
        """Return the organization's configured timezone name, if any.

        Blank values are treated as unset. An unknown organization also
        yields None so the caller falls back to the default zone.
        """
        result = await self.session.execute(
            select(Organization.timezone).where(Organization.id == organization_id)
        )
        value = result.scalar_one_or_none()
        if value is None or not value.strip():
            return None
        return value.strip()
