# controller/api/v1/__init__.py

from fastapi import APIRouter

# v1 router (mounted by app.py at /v1)
router = APIRouter()

from .reports import router as reports_router  # noqa: E402
from .reconcile import router as reconcile_router  # noqa: E402

router.include_router(reports_router)
router.include_router(reconcile_router, tags=["reconcile"])

__all__ = ["router"]
