from __future__ import annotations

import argparse
import asyncio
import uuid
from collections.abc import Sequence

import gymgo.db as db
from gymgo.db.models import Base
from gymgo.invalidation import build_view_invalidator
from gymgo.logging_config import configure_logging
from gymgo.recurrence import DAY_OF_WEEK_LABELS, PeriodKeyword
from gymgo.services.materialization_service import (
    apply_materialization,
    preview_materialization,
)
from gymgo.settings import get_settings


async def _init_db() -> None:
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _preview_classes(
    organization_id: uuid.UUID,
    period: str,
    start_date: str | None,
    template_ids: Sequence[str] | None,
) -> int:
    settings = get_settings()
    async with db.SessionMaker() as session:
        preview = await preview_materialization(
            session,
            organization_id=organization_id,
            period=period,
            settings=settings,
            start_date=start_date,
            template_ids=template_ids,
        )

    if preview.error is not None:
        print(f"Error: {preview.error}")
        return 1

    print(f"Period {preview.period_start} .. {preview.period_end}")
    for item in preview.templates:
        day_label = DAY_OF_WEEK_LABELS[item.day_of_week]
        pending = ", ".join(d.isoformat() for d in item.to_generate) or "-"
        print(
            f"{item.template_name} ({day_label} {item.start_time}-{item.end_time}): "
            f"{len(item.to_generate)} to generate, {len(item.already_generated)} already "
            f"generated [{pending}]"
        )
    print(f"Total to generate: {preview.total_to_generate}")
    return 0


async def _generate_classes(
    organization_id: uuid.UUID,
    period: str,
    start_date: str | None,
    template_ids: Sequence[str] | None,
) -> int:
    settings = get_settings()
    async with db.SessionMaker() as session:
        summary = await apply_materialization(
            session,
            organization_id=organization_id,
            period=period,
            settings=settings,
            start_date=start_date,
            template_ids=template_ids,
            invalidator=build_view_invalidator(settings),
        )

    print(summary.message)
    for error in summary.errors or []:
        print(f"- {error}")
    return 0 if summary.success else 1


def _add_generation_arguments(parser: argparse.ArgumentParser, default_period: str) -> None:
    parser.add_argument("--organization-id", type=uuid.UUID, required=True)
    parser.add_argument(
        "--period",
        choices=[keyword.value for keyword in PeriodKeyword],
        default=default_period,
    )
    parser.add_argument("--start-date", default=None, help="YYYY-MM-DD; defaults to today")
    parser.add_argument(
        "--template-id",
        dest="template_ids",
        action="append",
        default=None,
        help="limit generation to this template (repeatable)",
    )


def main() -> None:
    parser = argparse.ArgumentParser(prog="gymgo")
    sub = parser.add_subparsers(dest="cmd", required=True)
    settings = get_settings()
    configure_logging(settings)

    sub.add_parser("init-db")
    for name in ("preview-classes", "generate-classes"):
        _add_generation_arguments(sub.add_parser(name), settings.default_generation_period)

    args = parser.parse_args()

    if args.cmd == "init-db":
        asyncio.run(_init_db())
    elif args.cmd == "preview-classes":
        raise SystemExit(
            asyncio.run(
                _preview_classes(
                    args.organization_id, args.period, args.start_date, args.template_ids
                )
            )
        )
    elif args.cmd == "generate-classes":
        raise SystemExit(
            asyncio.run(
                _generate_classes(
                    args.organization_id, args.period, args.start_date, args.template_ids
                )
            )
        )
    else:
        raise SystemExit(2)
