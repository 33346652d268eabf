from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gymgo.db import get_session
from gymgo.invalidation import ViewInvalidator, build_view_invalidator
from gymgo.recurrence import PeriodKeyword
from gymgo.services.materialization_service import (
    apply_materialization,
    preview_materialization,
)
from gymgo.settings import Settings, get_settings

# Callers reach these routes already authenticated and scoped to the
# organization in the path; authorization lives in front of this service.
router = APIRouter(prefix="/organizations/{organization_id}/class-generation")


class GenerationRequest(BaseModel):
    period: PeriodKeyword
    start_date: date | None = None
    template_ids: list[uuid.UUID] | None = None


class TemplatePreviewOut(BaseModel):
    template_id: uuid.UUID
    template_name: str
    day_of_week: int
    start_time: str
    end_time: str
    dates: list[date]
    already_generated: list[date]
    to_generate: list[date]


class PreviewOut(BaseModel):
    period_start: date
    period_end: date
    templates: list[TemplatePreviewOut]
    total_to_generate: int


class SummaryOut(BaseModel):
    success: bool
    message: str
    classes_created: int
    skipped: int = 0
    errors: list[str] | None = Field(default=None)


def get_view_invalidator(settings: Settings = Depends(get_settings)) -> ViewInvalidator:
    return build_view_invalidator(settings)


@router.post("/preview", response_model=PreviewOut)
async def preview_class_generation(
    organization_id: uuid.UUID,
    payload: GenerationRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> PreviewOut:
    preview = await preview_materialization(
        session,
        organization_id=organization_id,
        period=payload.period,
        settings=settings,
        start_date=payload.start_date,
        template_ids=payload.template_ids,
    )
    if preview.error is not None or preview.period_start is None or preview.period_end is None:
        raise HTTPException(status_code=400, detail=preview.error or "Preview failed")

    return PreviewOut(
        period_start=preview.period_start,
        period_end=preview.period_end,
        templates=[
            TemplatePreviewOut(
                template_id=item.template_id,
                template_name=item.template_name,
                day_of_week=item.day_of_week,
                start_time=item.start_time,
                end_time=item.end_time,
                dates=item.dates,
                already_generated=item.already_generated,
                to_generate=item.to_generate,
            )
            for item in preview.templates
        ],
        total_to_generate=preview.total_to_generate,
    )


@router.post("/apply", response_model=SummaryOut)
async def apply_class_generation(
    organization_id: uuid.UUID,
    payload: GenerationRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    invalidator: ViewInvalidator = Depends(get_view_invalidator),
) -> SummaryOut:
    summary = await apply_materialization(
        session,
        organization_id=organization_id,
        period=payload.period,
        settings=settings,
        start_date=payload.start_date,
        template_ids=payload.template_ids,
        invalidator=invalidator,
    )
    return SummaryOut(
        success=summary.success,
        message=summary.message,
        classes_created=summary.classes_created,
        skipped=summary.skipped,
        errors=summary.errors,
    )
