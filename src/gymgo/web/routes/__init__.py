from __future__ import annotations

from fastapi import APIRouter

from gymgo.web.routes.class_generation import router as class_generation_router

router = APIRouter()
router.include_router(class_generation_router)
