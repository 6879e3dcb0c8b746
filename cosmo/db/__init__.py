"""
Database module for COSMO.

Provides async SQLAlchemy support with PostgreSQL and SQLite.
"""
from __future__ import annotations

from cosmo.db.database import (
    get_db,
    init_db,
    close_db,
    AsyncSessionLocal,
)
from cosmo.db.models import (
    AIModel,
    ChatFunction,
    CosmoActionMapping,
    CosmoDebugLog,
    CosmoIntent,
    FallbackModel,
    KnowledgeBaseDocument,
    Persona,
    SystemSetting,
    UsageLog,
    UserSetting,
)

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "AsyncSessionLocal",
    "AIModel",
    "ChatFunction",
    "CosmoActionMapping",
    "CosmoDebugLog",
    "CosmoIntent",
    "FallbackModel",
    "KnowledgeBaseDocument",
    "Persona",
    "SystemSetting",
    "UsageLog",
    "UserSetting",
]
