"""Aggregate router for the automation API."""
from fastapi import APIRouter

from .webhooks.router import router as webhooks_router

router = APIRouter()
router.include_router(webhooks_router)
