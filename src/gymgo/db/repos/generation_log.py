from __future__ import annotations

import enum
import uuid
from collections.abc import Iterable
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gymgo.db.models import ClassGenerationLog
from gymgo.db.repos.base import BaseRepository


class LedgerOutcome(enum.StrEnum):
    recorded = "recorded"
    already_exists = "already_exists"


class ClassGenerationLogRepository(BaseRepository[ClassGenerationLog]):
    """Idempotency ledger: one row per (template, generated date).

    The unique constraint on the table is what makes concurrent generation
    runs safe; `record` reports a conflict as `LedgerOutcome.already_exists`
    instead of raising.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, ClassGenerationLog)

    async def find_generated(
        self, template_id: uuid.UUID, candidate_dates: Iterable[date]
    ) -> set[date]:
        dates = list(candidate_dates)
        if not dates:
            return set()
        result = await self.session.execute(
            select(ClassGenerationLog.generated_date).where(
                ClassGenerationLog.template_id == template_id,
                ClassGenerationLog.generated_date.in_(dates),
            )
        )
        return set(result.scalars().all())

    async def record(
        self,
        *,
        organization_id: uuid.UUID,
        template_id: uuid.UUID,
        generated_date: date,
        generated_class_id: uuid.UUID,
    ) -> LedgerOutcome:
        entry = ClassGenerationLog(
            organization_id=organization_id,
            template_id=template_id,
            generated_date=generated_date,
            generated_class_id=generated_class_id,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(entry)
                await self.session.flush()
        except IntegrityError:
            return LedgerOutcome.already_exists
        return LedgerOutcome.recorded

    async def list_for_template(self, template_id: uuid.UUID) -> list[ClassGenerationLog]:
        result = await self.session.execute(
            select(ClassGenerationLog)
            .where(ClassGenerationLog.template_id == template_id)
            .order_by(ClassGenerationLog.generated_date.asc())
        )
        return list(result.scalars().all())
