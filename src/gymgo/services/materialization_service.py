from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from gymgo.db.models import ClassTemplate, GymClass
from gymgo.db.repos import (
    ClassGenerationLogRepository,
    ClassTemplateRepository,
    GymClassRepository,
    LedgerOutcome,
    OrganizationRepository,
)
from gymgo.invalidation import ViewInvalidator, invalidate_quietly
from gymgo.logging_config import get_request_id, log_with_fields, reset_request_id, set_request_id
from gymgo.recurrence import (
    MaterializationInputError,
    Period,
    PeriodKeyword,
    combine_date_time,
    enumerate_weekday,
    parse_period_keyword,
    resolve_period,
    resolve_timezone,
)
from gymgo.settings import Settings

logger = logging.getLogger("gymgo.materialization")


@dataclass(frozen=True, slots=True)
class TemplatePlan:
    template: ClassTemplate
    candidate_dates: tuple[date, ...]
    already_generated: tuple[date, ...]
    to_generate: tuple[date, ...]


@dataclass(frozen=True, slots=True)
class MaterializationPlan:
    organization_id: uuid.UUID
    period: Period
    items: tuple[TemplatePlan, ...]

    @property
    def total_to_generate(self) -> int:
        return sum(len(item.to_generate) for item in self.items)


@dataclass(frozen=True, slots=True)
class ItemError:
    template_id: uuid.UUID
    template_name: str
    generated_date: date
    reason: str

    def describe(self) -> str:
        return (
            f"Error creating class for {self.template_name} "
            f"on {self.generated_date.isoformat()}: {self.reason}"
        )


@dataclass(slots=True)
class ExecutionResult:
    created_count: int = 0
    skipped_count: int = 0
    errors: list[ItemError] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TemplatePreview:
    template_id: uuid.UUID
    template_name: str
    day_of_week: int
    start_time: str
    end_time: str
    dates: list[date]
    already_generated: list[date]
    to_generate: list[date]


@dataclass(frozen=True, slots=True)
class MaterializationPreview:
    templates: list[TemplatePreview]
    total_to_generate: int
    period_start: date | None = None
    period_end: date | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class MaterializationSummary:
    success: bool
    message: str
    classes_created: int
    skipped: int = 0
    errors: list[str] | None = None


@contextmanager
def _run_context() -> Iterator[str]:
    existing = get_request_id()
    if existing is not None:
        yield existing
        return

    run_id = uuid.uuid4().hex
    token = set_request_id(run_id)
    try:
        yield run_id
    finally:
        reset_request_id(token)


def parse_template_ids(raw: Sequence[str | uuid.UUID] | None) -> list[uuid.UUID] | None:
    if raw is None:
        return None
    out: list[uuid.UUID] = []
    for value in raw:
        if isinstance(value, uuid.UUID):
            out.append(value)
            continue
        try:
            out.append(uuid.UUID(str(value).strip()))
        except ValueError as exc:
            raise MaterializationInputError(f"Invalid template id: {value!r}") from exc
    return out


async def select_templates(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    active_only: bool = True,
    template_ids: Sequence[uuid.UUID] | None = None,
) -> list[ClassTemplate]:
    repo = ClassTemplateRepository(session)
    return await repo.list_for_generation(
        organization_id,
        active_only=active_only,
        template_ids=template_ids,
    )


async def plan_materialization(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    templates: Sequence[ClassTemplate],
    period: Period,
    ledger: ClassGenerationLogRepository | None = None,
) -> MaterializationPlan:
    """Split each template's candidate dates into generated vs. pending.

    Read-only: this is exactly what a preview reports, and what
    `execute_plan` later consumes.
    """

    selected_ledger = ledger if ledger is not None else ClassGenerationLogRepository(session)

    items: list[TemplatePlan] = []
    for template in templates:
        if template.organization_id != organization_id:
            raise ValueError("Template belongs to a different organization")

        candidates = enumerate_weekday(template.day_of_week, period.start, period.last_day)
        generated = await selected_ledger.find_generated(template.id, candidates)
        items.append(
            TemplatePlan(
                template=template,
                candidate_dates=tuple(candidates),
                already_generated=tuple(d for d in candidates if d in generated),
                to_generate=tuple(d for d in candidates if d not in generated),
            )
        )

    return MaterializationPlan(organization_id=organization_id, period=period, items=tuple(items))


def build_gym_class(template: ClassTemplate, *, start: datetime, end: datetime) -> GymClass:
    return GymClass(
        organization_id=template.organization_id,
        template_id=template.id,
        name=template.name,
        description=template.description,
        class_type=template.class_type,
        start_time=start,
        end_time=end,
        max_capacity=template.max_capacity,
        current_bookings=0,
        waitlist_enabled=template.waitlist_enabled,
        max_waitlist=template.max_waitlist,
        instructor_id=template.instructor_id,
        instructor_name=template.instructor_name,
        location=template.location,
        booking_opens_hours=template.booking_opens_hours,
        booking_closes_minutes=template.booking_closes_minutes,
        cancellation_deadline_hours=template.cancellation_deadline_hours,
        is_cancelled=False,
    )


async def _discard_item(
    session: AsyncSession, savepoint: AsyncSessionTransaction, plan: MaterializationPlan
) -> None:
    if session.in_nested_transaction():
        await savepoint.rollback()
        return

    # A failed COMMIT leaves the outer transaction unusable; rolling it back
    # expires every loaded template, so reload them for the remaining dates.
    await session.rollback()
    for item in plan.items:
        await session.refresh(item.template)


async def execute_plan(
    session: AsyncSession,
    plan: MaterializationPlan,
    *,
    zone: tzinfo,
    classes: GymClassRepository | None = None,
    ledger: ClassGenerationLogRepository | None = None,
) -> ExecutionResult:
    """Create one class per pending (template, date) and record it in the ledger.

    Each date runs in its own SAVEPOINT and is committed on its own, so a
    failing date never blocks its siblings and finished work survives a later
    failure. A ledger conflict means another run already handled the slot:
    the class created here is discarded and the slot counts as skipped.
    """

    selected_classes = classes if classes is not None else GymClassRepository(session)
    selected_ledger = ledger if ledger is not None else ClassGenerationLogRepository(session)
    result = ExecutionResult()

    for item in plan.items:
        template = item.template
        template_id = template.id
        template_name = template.name

        for day in item.to_generate:
            try:
                start = combine_date_time(day, template.start_time, zone)
                end = combine_date_time(day, template.end_time, zone)
            except ValueError as exc:
                result.errors.append(ItemError(template_id, template_name, day, str(exc)))
                continue

            savepoint = await session.begin_nested()
            try:
                gym_class = await selected_classes.add(
                    build_gym_class(template, start=start, end=end)
                )
                outcome = await selected_ledger.record(
                    organization_id=plan.organization_id,
                    template_id=template_id,
                    generated_date=day,
                    generated_class_id=gym_class.id,
                )
                if outcome is LedgerOutcome.already_exists:
                    await savepoint.rollback()
                    log_with_fields(
                        logger,
                        logging.WARNING,
                        "generation slot already recorded by a concurrent run",
                        template_id=template_id,
                        generated_date=day.isoformat(),
                    )
                    result.skipped_count += 1
                    continue

                await savepoint.commit()
                await session.commit()
            except SQLAlchemyError as exc:
                await _discard_item(session, savepoint, plan)
                log_with_fields(
                    logger,
                    logging.WARNING,
                    "class creation failed",
                    template_id=template_id,
                    generated_date=day.isoformat(),
                    exc_info=True,
                )
                result.errors.append(ItemError(template_id, template_name, day, str(exc)))
                continue

            result.created_count += 1

    return result


async def _organization_zone(
    session: AsyncSession, organization_id: uuid.UUID, settings: Settings
) -> tzinfo:
    name = await OrganizationRepository(session).get_timezone(organization_id)
    return resolve_timezone(name, settings.default_timezone)


def _today_in(zone: tzinfo) -> date:
    return datetime.now(zone).date()


async def preview_materialization(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    period: str | PeriodKeyword,
    settings: Settings,
    start_date: str | date | None = None,
    template_ids: Sequence[str | uuid.UUID] | None = None,
    today: date | None = None,
) -> MaterializationPreview:
    with _run_context():
        try:
            keyword = parse_period_keyword(period)
            selected_ids = parse_template_ids(template_ids)
        except MaterializationInputError as exc:
            return MaterializationPreview(templates=[], total_to_generate=0, error=str(exc))

        try:
            zone = await _organization_zone(session, organization_id, settings)
            resolved = resolve_period(
                keyword,
                start_date=start_date,
                today=today if today is not None else _today_in(zone),
            )
        except MaterializationInputError as exc:
            return MaterializationPreview(templates=[], total_to_generate=0, error=str(exc))
        except SQLAlchemyError:
            logger.exception("organization lookup failed")
            return MaterializationPreview(
                templates=[], total_to_generate=0, error="Could not load organization settings"
            )

        try:
            templates = await select_templates(
                session, organization_id=organization_id, template_ids=selected_ids
            )
            plan = await plan_materialization(
                session, organization_id=organization_id, templates=templates, period=resolved
            )
        except SQLAlchemyError:
            logger.exception("template lookup failed")
            return MaterializationPreview(
                templates=[], total_to_generate=0, error="Could not load class templates"
            )

        return MaterializationPreview(
            templates=[
                TemplatePreview(
                    template_id=item.template.id,
                    template_name=item.template.name,
                    day_of_week=item.template.day_of_week,
                    start_time=item.template.start_time,
                    end_time=item.template.end_time,
                    dates=list(item.candidate_dates),
                    already_generated=list(item.already_generated),
                    to_generate=list(item.to_generate),
                )
                for item in plan.items
            ],
            total_to_generate=plan.total_to_generate,
            period_start=resolved.start,
            period_end=resolved.last_day,
        )


async def apply_materialization(
    session: AsyncSession,
    *,
    organization_id: uuid.UUID,
    period: str | PeriodKeyword,
    settings: Settings,
    start_date: str | date | None = None,
    template_ids: Sequence[str | uuid.UUID] | None = None,
    invalidator: ViewInvalidator | None = None,
    today: date | None = None,
    classes: GymClassRepository | None = None,
) -> MaterializationSummary:
    """Materialize the pending classes of an organization for one period.

    Per-date failures are collected into the summary instead of raised. When
    the template or ledger lookup fails the caller's session is rolled back,
    which expires every ORM object it holds.
    """
    with _run_context():
        try:
            keyword = parse_period_keyword(period)
            selected_ids = parse_template_ids(template_ids)
        except MaterializationInputError as exc:
            return MaterializationSummary(
                success=False, message=f"Invalid parameters: {exc}", classes_created=0
            )

        try:
            zone = await _organization_zone(session, organization_id, settings)
            resolved = resolve_period(
                keyword,
                start_date=start_date,
                today=today if today is not None else _today_in(zone),
            )
        except MaterializationInputError as exc:
            return MaterializationSummary(
                success=False, message=f"Invalid parameters: {exc}", classes_created=0
            )
        except SQLAlchemyError:
            logger.exception("organization lookup failed")
            return MaterializationSummary(
                success=False, message="Could not load organization settings", classes_created=0
            )

        try:
            templates = await select_templates(
                session, organization_id=organization_id, template_ids=selected_ids
            )
            plan = await plan_materialization(
                session, organization_id=organization_id, templates=templates, period=resolved
            )
        except SQLAlchemyError:
            logger.exception("template lookup failed")
            await session.rollback()
            return MaterializationSummary(
                success=False, message="Could not load class templates", classes_created=0
            )

        log_with_fields(
            logger,
            logging.INFO,
            "class generation started",
            organization_id=organization_id,
            period=resolved.keyword.value,
            period_start=resolved.start.isoformat(),
            templates=len(plan.items),
            to_generate=plan.total_to_generate,
        )

        result = await execute_plan(session, plan, zone=zone, classes=classes)

        log_with_fields(
            logger,
            logging.INFO,
            "class generation finished",
            organization_id=organization_id,
            created=result.created_count,
            skipped=result.skipped_count,
            failed=len(result.errors),
        )

        if result.created_count > 0 and invalidator is not None:
            await invalidate_quietly(invalidator, organization_id)

        message = f"Generated {result.created_count} classes"
        if result.errors:
            message = f"{message}; {len(result.errors)} failed"

        return MaterializationSummary(
            success=True,
            message=message,
            classes_created=result.created_count,
            skipped=result.skipped_count,
            errors=[error.describe() for error in result.errors] or None,
        )
