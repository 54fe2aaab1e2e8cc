"""API router for v1 endpoints."""

from fastapi import APIRouter

from augment_engine.api import notes

router = APIRouter()

# Note assembly routes (streaming and one-shot)
router.include_router(notes.router, tags=["notes"])
