from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymgo.db.models import GymClass
from gymgo.db.repos.base import BaseRepository


class GymClassRepository(BaseRepository[GymClass]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, GymClass)

    async def list_for_organization(self, organization_id: uuid.UUID) -> list[GymClass]:
        result = await self.session.execute(
            select(GymClass)
            .where(GymClass.organization_id == organization_id)
            .order_by(GymClass.start_time.asc())
        )
        return list(result.scalars().all())

    async def list_for_template(self, template_id: uuid.UUID) -> list[GymClass]:
        return await self.list_where(GymClass.template_id == template_id)
