"""
event_scoring/routes/__init__.py
Route registration
"""
from fastapi import APIRouter

from event_scoring.routes import assignments, bulk, contestants, judges

router = APIRouter()

router.include_router(assignments.router)
router.include_router(bulk.router)
router.include_router(judges.router)
router.include_router(contestants.router)
