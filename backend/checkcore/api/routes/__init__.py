"""API routes."""

import logging
from fastapi import APIRouter

from checkcore.api.routes import checks, kds

logger = logging.getLogger(__name__)

api_router = APIRouter()

api_router.include_router(checks.router, prefix="/checks", tags=["checks"])
api_router.include_router(kds.router, prefix="/kds-tickets", tags=["kds"])
