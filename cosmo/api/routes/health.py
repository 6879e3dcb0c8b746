"""Health check endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cosmo.config import DEFAULT_PROVIDER, settings
from cosmo.core.providers import has_provider_api_key
from cosmo.db import get_db

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/health/full")
async def full_health_check(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """
    Full health check including dependencies.

    Reports:
    - LLM: configured (default provider API key present)
    - Database: reachable (``SELECT 1``)
    """
    llm_ok = has_provider_api_key(DEFAULT_PROVIDER)
    try:
        await db.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        db_ok = False

    return {
        "status": "ok" if llm_ok and db_ok else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "dependencies": {
            "llm": {
                "status": "ok" if llm_ok else "unconfigured",
                "provider": DEFAULT_PROVIDER,
            },
            "database": {"status": "ok" if db_ok else "unavailable"},
        },
    }
