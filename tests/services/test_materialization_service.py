from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import httpx
import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import gymgo.db as db
from gymgo.db.models import GymClass
from gymgo.db.repos import ClassGenerationLogRepository, ClassTemplateRepository, GymClassRepository
from gymgo.recurrence import resolve_period
from gymgo.services.materialization_service import (
    apply_materialization,
    execute_plan,
    plan_materialization,
    preview_materialization,
    select_templates,
)
from gymgo.settings import Settings
from gymgo.testing.factories import (
    count_classes,
    count_ledger_rows,
    create_organization,
    create_template,
)

MONDAY = date(2024, 1, 1)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass
class CapturingInvalidator:
    calls: list[tuple[uuid.UUID, list[str]]] = field(default_factory=list)

    async def invalidate(self, organization_id: uuid.UUID, paths: Sequence[str]) -> None:
        self.calls.append((organization_id, list(paths)))


class BrokenInvalidator:
    async def invalidate(self, organization_id: uuid.UUID, paths: Sequence[str]) -> None:
        raise httpx.ConnectError("cache service unreachable")


class CrashingInvalidator:
    async def invalidate(self, organization_id: uuid.UUID, paths: Sequence[str]) -> None:
        raise RuntimeError("cache backend down")


class FailingOnDateClassRepository(GymClassRepository):
    def __init__(self, session: AsyncSession, fail_on: date) -> None:
        super().__init__(session)
        self.fail_on = fail_on

    async def add(self, obj: GymClass, *, flush: bool = True) -> GymClass:
        if as_utc(obj.start_time).date() == self.fail_on:
            raise SQLAlchemyError("simulated insert failure")
        return await super().add(obj, flush=flush)


@pytest.mark.asyncio
async def test_preview_week_from_monday_has_single_candidate(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    template = await create_template(db_session, organization=org, day_of_week=1)

    preview = await preview_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=settings,
        start_date="2024-01-01",
    )

    assert preview.error is None
    assert preview.period_start == MONDAY
    assert preview.period_end == date(2024, 1, 7)
    assert len(preview.templates) == 1
    item = preview.templates[0]
    assert item.template_id == template.id
    assert item.dates == [MONDAY]
    assert item.already_generated == []
    assert item.to_generate == [MONDAY]
    assert preview.total_to_generate == 1

    # Preview never writes.
    assert await count_classes(db_session, org.id) == 0
    assert await count_ledger_rows(db_session, template.id) == 0


@pytest.mark.asyncio
async def test_apply_twice_is_idempotent(db_session: AsyncSession, settings: Settings) -> None:
    org = await create_organization(db_session)
    await create_template(db_session, organization=org, name="Yoga", day_of_week=3)
    await create_template(db_session, organization=org, name="HIIT", day_of_week=5)

    first = await apply_materialization(
        db_session, organization_id=org.id, period="two_weeks", settings=settings, start_date=MONDAY
    )
    second = await apply_materialization(
        db_session, organization_id=org.id, period="two_weeks", settings=settings, start_date=MONDAY
    )

    assert first.success is True
    assert first.classes_created == 4
    assert first.errors is None
    assert second.success is True
    assert second.classes_created == 0
    assert second.errors is None
    assert await count_classes(db_session, org.id) == 4


@pytest.mark.asyncio
async def test_apply_month_creates_wednesdays_with_copied_fields(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session, timezone="America/Mexico_City")
    template = await create_template(
        db_session,
        organization=org,
        name="Pilates",
        day_of_week=3,
        start_time="09:00",
        end_time="10:15",
        max_capacity=12,
        location="Studio B",
    )

    summary = await apply_materialization(
        db_session, organization_id=org.id, period="month", settings=settings, start_date=MONDAY
    )

    assert summary.classes_created == 4
    classes = await GymClassRepository(db_session).list_for_organization(org.id)
    zone = ZoneInfo("America/Mexico_City")
    local_starts = [as_utc(c.start_time).astimezone(zone) for c in classes]
    assert [s.date() for s in local_starts] == [
        date(2024, 1, 3),
        date(2024, 1, 10),
        date(2024, 1, 17),
        date(2024, 1, 24),
    ]
    assert all((s.hour, s.minute) == (9, 0) for s in local_starts)
    for gym_class in classes:
        assert gym_class.template_id == template.id
        assert gym_class.organization_id == org.id
        assert gym_class.name == "Pilates"
        assert gym_class.max_capacity == 12
        assert gym_class.location == "Studio B"
        assert gym_class.is_cancelled is False
        assert gym_class.current_bookings == 0
        assert as_utc(gym_class.end_time) - as_utc(gym_class.start_time) == (
            datetime(2024, 1, 1, 10, 15) - datetime(2024, 1, 1, 9, 0)
        )


@pytest.mark.asyncio
async def test_plan_partitions_candidates_after_partial_generation(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    await create_template(db_session, organization=org, name="Mon", day_of_week=1)
    await create_template(db_session, organization=org, name="Thu", day_of_week=4)

    await apply_materialization(
        db_session, organization_id=org.id, period="week", settings=settings, start_date=MONDAY
    )
    preview = await preview_materialization(
        db_session, organization_id=org.id, period="month", settings=settings, start_date=MONDAY
    )

    assert preview.error is None
    for item in preview.templates:
        already = set(item.already_generated)
        pending = set(item.to_generate)
        assert already.isdisjoint(pending)
        assert already | pending == set(item.dates)
        assert item.to_generate == sorted(item.to_generate)
        assert len(item.already_generated) == 1

    assert preview.total_to_generate == sum(len(i.dates) - 1 for i in preview.templates)


@pytest.mark.asyncio
async def test_one_failing_date_does_not_block_siblings(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    template = await create_template(db_session, organization=org, name="Spinning", day_of_week=1)
    failing_day = date(2024, 1, 15)

    summary = await apply_materialization(
        db_session,
        organization_id=org.id,
        period="month",
        settings=settings,
        start_date=MONDAY,
        classes=FailingOnDateClassRepository(db_session, failing_day),
    )

    assert summary.success is True
    assert summary.classes_created == 4
    assert summary.errors is not None
    assert len(summary.errors) == 1
    assert "Spinning" in summary.errors[0]
    assert "2024-01-15" in summary.errors[0]
    assert await count_ledger_rows(db_session, template.id) == 4

    generated = await ClassGenerationLogRepository(db_session).find_generated(
        template.id, [MONDAY, date(2024, 1, 8), failing_day, date(2024, 1, 22), date(2024, 1, 29)]
    )
    assert failing_day not in generated
    assert len(generated) == 4

    # Retrying is the recovery path: only the failed slot is created.
    retry = await apply_materialization(
        db_session, organization_id=org.id, period="month", settings=settings, start_date=MONDAY
    )
    assert retry.classes_created == 1
    assert retry.errors is None
    assert await count_ledger_rows(db_session, template.id) == 5


@pytest.mark.asyncio
async def test_failed_commit_on_one_date_does_not_abort_the_batch(
    db_session: AsyncSession, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    org = await create_organization(db_session)
    org_id = org.id
    template = await create_template(db_session, organization=org, name="Spinning", day_of_week=1)
    template_id = template.id

    real_commit = db_session.commit
    commits = 0

    async def _commit_locked_once() -> None:
        nonlocal commits
        commits += 1
        if commits == 2:
            raise OperationalError("COMMIT", None, Exception("database is locked"))
        await real_commit()

    monkeypatch.setattr(db_session, "commit", _commit_locked_once)

    summary = await apply_materialization(
        db_session, organization_id=org_id, period="month", settings=settings, start_date=MONDAY
    )

    assert summary.success is True
    assert summary.classes_created == 4
    assert summary.errors is not None
    assert len(summary.errors) == 1
    assert "Spinning on 2024-01-08" in summary.errors[0]
    assert await count_classes(db_session, org_id) == 4
    assert await count_ledger_rows(db_session, template_id) == 4


@pytest.mark.asyncio
async def test_concurrent_run_winning_a_slot_is_skipped_not_reported(
    db_session: AsyncSession,
) -> None:
    org = await create_organization(db_session)
    template = await create_template(db_session, organization=org, day_of_week=1)
    period = resolve_period("two_weeks", start_date=MONDAY, today=MONDAY)

    templates = await select_templates(db_session, organization_id=org.id)
    plan = await plan_materialization(
        db_session, organization_id=org.id, templates=templates, period=period
    )
    assert plan.items[0].to_generate == (MONDAY, date(2024, 1, 8))
    await db_session.commit()

    # Another run materializes the first Monday after our plan was computed.
    async with db.SessionMaker() as other_session:
        other_templates = await select_templates(other_session, organization_id=org.id)
        other_plan = await plan_materialization(
            other_session,
            organization_id=org.id,
            templates=other_templates,
            period=resolve_period("week", start_date=MONDAY, today=MONDAY),
        )
        other_result = await execute_plan(
            other_session, other_plan, zone=ZoneInfo("America/Mexico_City")
        )
        assert other_result.created_count == 1

    result = await execute_plan(db_session, plan, zone=ZoneInfo("America/Mexico_City"))

    assert result.created_count == 1
    assert result.skipped_count == 1
    assert result.errors == []
    assert await count_ledger_rows(db_session, template.id) == 2
    # The losing run's class was discarded with its savepoint.
    assert len(await GymClassRepository(db_session).list_for_template(template.id)) == 2


@pytest.mark.asyncio
async def test_templates_sharing_weekday_and_time_materialize_independently(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    first = await create_template(db_session, organization=org, name="Box A", day_of_week=1)
    second = await create_template(db_session, organization=org, name="Box B", day_of_week=1)

    summary = await apply_materialization(
        db_session, organization_id=org.id, period="week", settings=settings, start_date=MONDAY
    )

    assert summary.classes_created == 2
    assert await count_ledger_rows(db_session, first.id) == 1
    assert await count_ledger_rows(db_session, second.id) == 1


@pytest.mark.asyncio
async def test_malformed_template_time_fails_only_that_template(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    await create_template(db_session, organization=org, name="Broken", start_time="9am")
    good = await create_template(db_session, organization=org, name="Good")

    summary = await apply_materialization(
        db_session, organization_id=org.id, period="two_weeks", settings=settings, start_date=MONDAY
    )

    assert summary.success is True
    assert summary.classes_created == 2
    assert summary.errors is not None
    assert len(summary.errors) == 2
    assert all("Broken" in error for error in summary.errors)
    assert await count_ledger_rows(db_session, good.id) == 2


@pytest.mark.asyncio
async def test_apply_uses_default_timezone_when_organization_has_none(
    db_session: AsyncSession,
) -> None:
    org = await create_organization(db_session, timezone=None)
    await create_template(db_session, organization=org, start_time="09:00", end_time="10:00")

    summary = await apply_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=Settings(default_timezone="Europe/Madrid"),
        start_date=MONDAY,
    )

    assert summary.classes_created == 1
    (gym_class,) = await GymClassRepository(db_session).list_for_organization(org.id)
    assert as_utc(gym_class.start_time) == datetime(2024, 1, 1, 8, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_apply_spring_forward_day_keeps_local_wall_clock(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session, timezone="America/New_York")
    await create_template(db_session, organization=org, day_of_week=0, start_time="09:00")

    summary = await apply_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=settings,
        start_date="2024-03-10",
    )

    assert summary.classes_created == 1
    (gym_class,) = await GymClassRepository(db_session).list_for_organization(org.id)
    local = as_utc(gym_class.start_time).astimezone(ZoneInfo("America/New_York"))
    assert (local.date(), local.hour, local.minute) == (date(2024, 3, 10), 9, 0)


@pytest.mark.asyncio
async def test_apply_only_touches_requested_active_templates_in_organization(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    other_org = await create_organization(db_session, name="Other Gym")
    chosen = await create_template(db_session, organization=org, name="Chosen")
    await create_template(db_session, organization=org, name="Not chosen")
    inactive = await create_template(db_session, organization=org, name="Off", is_active=False)
    foreign = await create_template(db_session, organization=other_org, name="Foreign")

    summary = await apply_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=settings,
        start_date=MONDAY,
        template_ids=[str(chosen.id), str(inactive.id), str(foreign.id)],
    )

    assert summary.classes_created == 1
    assert await count_ledger_rows(db_session, chosen.id) == 1
    assert await count_ledger_rows(db_session, inactive.id) == 0
    assert await count_classes(db_session, other_org.id) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("period", "start_date", "template_ids"),
    [
        ("fortnight", "2024-01-01", None),
        ("week", "2024-02-30", None),
        ("week", "2024-01-01", ["not-a-uuid"]),
    ],
)
async def test_apply_rejects_bad_input_before_writing(
    db_session: AsyncSession,
    settings: Settings,
    period: str,
    start_date: str,
    template_ids: list[str] | None,
) -> None:
    org = await create_organization(db_session)
    await create_template(db_session, organization=org)

    summary = await apply_materialization(
        db_session,
        organization_id=org.id,
        period=period,
        settings=settings,
        start_date=start_date,
        template_ids=template_ids,
    )

    assert summary.success is False
    assert summary.classes_created == 0
    assert summary.message.startswith("Invalid parameters")
    assert await count_classes(db_session, org.id) == 0


@pytest.mark.asyncio
async def test_unknown_organization_timezone_is_an_input_error(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session, timezone="Mars/Olympus_Mons")
    await create_template(db_session, organization=org)

    summary = await apply_materialization(
        db_session, organization_id=org.id, period="week", settings=settings, start_date=MONDAY
    )
    preview = await preview_materialization(
        db_session, organization_id=org.id, period="week", settings=settings, start_date=MONDAY
    )

    assert summary.success is False
    assert "Unknown timezone" in summary.message
    assert preview.error is not None
    assert "Unknown timezone" in preview.error


@pytest.mark.asyncio
async def test_template_lookup_failure_aborts_without_writes(
    db_session: AsyncSession, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    org = await create_organization(db_session)
    org_id = org.id
    await create_template(db_session, organization=org)

    async def _broken(self: ClassTemplateRepository, *args: object, **kwargs: object) -> None:
        raise SQLAlchemyError("connection reset")

    monkeypatch.setattr(ClassTemplateRepository, "list_for_generation", _broken)
    invalidator = CapturingInvalidator()

    summary = await apply_materialization(
        db_session,
        organization_id=org_id,
        period="week",
        settings=settings,
        start_date=MONDAY,
        invalidator=invalidator,
    )
    preview = await preview_materialization(
        db_session, organization_id=org_id, period="week", settings=settings, start_date=MONDAY
    )

    assert summary.success is False
    assert summary.message == "Could not load class templates"
    assert preview.error == "Could not load class templates"
    assert invalidator.calls == []
    assert await count_classes(db_session, org_id) == 0


@pytest.mark.asyncio
async def test_invalidator_fires_only_when_classes_were_created(
    db_session: AsyncSession, settings: Settings
) -> None:
    org = await create_organization(db_session)
    await create_template(db_session, organization=org)
    invalidator = CapturingInvalidator()

    await apply_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=settings,
        start_date=MONDAY,
        invalidator=invalidator,
    )
    await apply_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=settings,
        start_date=MONDAY,
        invalidator=invalidator,
    )

    assert invalidator.calls == [(org.id, ["/dashboard/classes", "/dashboard/templates"])]


@pytest.mark.asyncio
@pytest.mark.parametrize("invalidator_type", [BrokenInvalidator, CrashingInvalidator])
async def test_invalidator_failure_does_not_change_summary(
    db_session: AsyncSession, settings: Settings, invalidator_type: type
) -> None:
    org = await create_organization(db_session)
    await create_template(db_session, organization=org)

    summary = await apply_materialization(
        db_session,
        organization_id=org.id,
        period="week",
        settings=settings,
        start_date=MONDAY,
        invalidator=invalidator_type(),
    )

    assert summary.success is True
    assert summary.classes_created == 1
    assert summary.errors is None
    assert await count_classes(db_session, org.id) == 1
