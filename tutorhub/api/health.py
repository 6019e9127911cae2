"""
Health and diagnostics API.

Lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import inspect

from tutorhub.api.deps import Services, get_services
from tutorhub.core.database import check_connection, get_engine

logger = logging.getLogger("tutorhub")

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = ["users", "companions", "learning_sessions", "user_subscriptions"]


class WebhookHealth(BaseModel):
    configured: bool
    catalog_version: str
    plan_external_ids: Dict[str, Optional[str]]
    computed_at: str


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        engine = get_engine()
        if not check_connection(engine):
            return JSONResponse(status_code=503, content={"ready": False, "reason": "db_unreachable"})
        present = set(inspect(engine).get_table_names())
    except Exception:
        logger.exception("health.readyz_failed")
        return JSONResponse(status_code=503, content={"ready": False, "reason": "db_error"})

    missing = [name for name in REQUIRED_TABLES if name not in present]
    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing_tables": missing})
    return {"ready": True}


@router.get("/webhooks", response_model=WebhookHealth)
def webhook_health(services: Services = Depends(get_services)):
    """Whether webhook verification is configured, and how plans map to billing ids."""
    return WebhookHealth(
        configured=services.verifier.configured,
        catalog_version=services.catalog.version,
        plan_external_ids=services.catalog.external_id_map(),
        computed_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )
