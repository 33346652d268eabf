from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gymgo.db.models import ClassTemplate
from gymgo.db.repos.base import BaseRepository


class ClassTemplateRepository(BaseRepository[ClassTemplate]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, ClassTemplate)

    async def list_for_generation(
        self,
        organization_id: uuid.UUID,
        *,
        active_only: bool = True,
        template_ids: Sequence[uuid.UUID] | None = None,
    ) -> list[ClassTemplate]:
        stmt = select(ClassTemplate).where(ClassTemplate.organization_id == organization_id)
        if active_only:
            stmt = stmt.where(ClassTemplate.is_active.is_(True))
        # An empty subset means "no narrowing", same as omitting it.
        if template_ids:
            stmt = stmt.where(ClassTemplate.id.in_(list(template_ids)))

        result = await self.session.execute(
            stmt.order_by(
                ClassTemplate.day_of_week.asc(),
                ClassTemplate.start_time.asc(),
                ClassTemplate.id.asc(),
            )
        )
        return list(result.scalars().all())
