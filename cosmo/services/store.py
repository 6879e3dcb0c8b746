"""
Data access for the orchestration pipeline.

``CosmoStore`` is the only component that touches the database session.
Registry and catalogue reads return ``LoadResult`` and never raise: a failed
load yields an empty value plus the error.  Audit writes (debug log, usage
log) log and swallow their failures so accounting never fails a request.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cosmo.config import DEFAULT_PROVIDER
from cosmo.core.actions.models import ActionMapping
from cosmo.core.functions.models import FunctionCandidate
from cosmo.core.intent.models import IntentDefinition
from cosmo.core.routing.models import FallbackModelRef, ModelCandidate
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
from cosmo.services.load_result import LoadResult

logger = logging.getLogger(__name__)

IMAGE_GENERATION_CATEGORY = "image_generation"
KNOWLEDGE_BASE_LIMIT = 5
_MIN_SEARCH_TERM_LENGTH = 3


def _intent_from_row(row: CosmoIntent) -> IntentDefinition:
    return IntentDefinition(
        intent_key=row.intent_key,
        category=row.category,
        keywords=tuple(row.keywords or ()),
        required_functions=tuple(row.required_functions or ()),
        context_needs=tuple(row.context_needs or ()),
        priority=row.priority or 0,
        display_name=row.display_name or "",
    )


def _mapping_from_row(row: CosmoActionMapping) -> ActionMapping:
    return ActionMapping(
        id=row.id,
        intent_key=row.intent_key,
        action_key=row.action_key,
        action_type=row.action_type,
        action_config=dict(row.action_config or {}),
        parameter_patterns=dict(row.parameter_patterns or {}),
        required_context=tuple(row.required_context or ()),
        priority=row.priority if row.priority is not None else 50,
        conditions=dict(row.conditions or {}),
    )


def _function_from_row(row: ChatFunction) -> FunctionCandidate:
    return FunctionCandidate(
        function_key=row.function_key,
        name=row.name or "",
        description=row.description,
        tags=tuple(row.tags or ()),
        input_schema=dict(row.input_schema or {}),
        output_schema=dict(row.output_schema or {}),
        is_enabled=row.is_enabled,
    )


def _model_from_row(row: AIModel) -> ModelCandidate:
    return ModelCandidate(
        model_id=row.model_id,
        provider=row.provider,
        name=row.name or row.model_id,
        best_for=row.best_for,
        best_for_description=row.best_for_description,
        pricing_prompt=row.pricing_prompt or 0.0,
        pricing_completion=row.pricing_completion or 0.0,
        is_free=row.is_free,
        context_length=row.context_length,
        default_max_tokens=row.default_max_tokens,
        default_temperature=row.default_temperature,
        skip_temperature=row.skip_temperature,
    )


def search_terms(query: str) -> list[str]:
    """Lower-cased words long enough to be worth matching."""
    words = [w.strip(".,;:!?\"'()[]{}").lower() for w in (query or "").split()]
    return [w for w in words if len(w) > _MIN_SEARCH_TERM_LENGTH]


class CosmoStore:
    """Read registries/catalogues and write audit rows over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        # AsyncSession is not safe for concurrent use; parallel function
        # batches share one store.
        self._lock = asyncio.Lock()

    async def _execute(self, stmt: Any) -> Any:
        async with self._lock:
            return await self.session.execute(stmt)

    async def _get(self, model: Any, key: Any) -> Any:
        async with self._lock:
            return await self.session.get(model, key)

    async def _flush(self) -> None:
        async with self._lock:
            await self.session.flush()

    async def _rollback(self) -> None:
        async with self._lock:
            await self.session.rollback()

    # -------------------------------------------------------------------------
    # Registries
    # -------------------------------------------------------------------------

    async def load_intents(self) -> LoadResult[list[IntentDefinition]]:
        """Active intents, highest priority first."""
        try:
            result = await self._execute(
                select(CosmoIntent)
                .where(CosmoIntent.is_active.is_(True))
                .order_by(CosmoIntent.priority.desc())
            )
            return LoadResult.success([_intent_from_row(r) for r in result.scalars().all()])
        except Exception as e:
            logger.error(f"Failed to load intents: {e}")
            return LoadResult.failure([], "cosmo_intents", e)

    async def load_action_mappings(self) -> LoadResult[list[ActionMapping]]:
        """Active action mappings, highest priority first."""
        try:
            result = await self._execute(
                select(CosmoActionMapping)
                .where(CosmoActionMapping.is_active.is_(True))
                .order_by(CosmoActionMapping.priority.desc())
            )
            return LoadResult.success([_mapping_from_row(r) for r in result.scalars().all()])
        except Exception as e:
            logger.error(f"Failed to load action mappings: {e}")
            return LoadResult.failure([], "cosmo_action_mappings", e)

    async def load_functions(self) -> LoadResult[list[FunctionCandidate]]:
        """Enabled functions in registry order."""
        try:
            result = await self._execute(
                select(ChatFunction)
                .where(ChatFunction.is_enabled.is_(True))
                .order_by(ChatFunction.display_order)
            )
            return LoadResult.success([_function_from_row(r) for r in result.scalars().all()])
        except Exception as e:
            logger.error(f"Failed to load functions: {e}")
            return LoadResult.failure([], "chat_functions", e)

    async def get_function(self, function_key: str) -> LoadResult[Optional[FunctionCandidate]]:
        """Enabled function by key; ``None`` when missing or disabled."""
        try:
            result = await self._execute(
                select(ChatFunction).where(
                    ChatFunction.function_key == function_key,
                    ChatFunction.is_enabled.is_(True),
                )
            )
            row = result.scalar_one_or_none()
            return LoadResult.success(_function_from_row(row) if row else None)
        except Exception as e:
            logger.error(f"Failed to load function {function_key}: {e}")
            return LoadResult.failure(None, "chat_functions", e)

    # -------------------------------------------------------------------------
    # Model catalogue
    # -------------------------------------------------------------------------

    async def load_models(self, provider: Optional[str] = None) -> LoadResult[list[ModelCandidate]]:
        """Active models, optionally restricted to one provider."""
        try:
            stmt = select(AIModel).where(AIModel.is_active.is_(True))
            if provider:
                stmt = stmt.where(func.lower(AIModel.provider) == provider.lower())
            result = await self._execute(stmt.order_by(AIModel.display_order))
            return LoadResult.success([_model_from_row(r) for r in result.scalars().all()])
        except Exception as e:
            logger.error(f"Failed to load models: {e}")
            return LoadResult.failure([], "ai_models", e)

    async def get_model(self, model_id: str) -> Optional[ModelCandidate]:
        """Active model config, or ``None`` (unknown or load failure)."""
        try:
            result = await self._execute(
                select(AIModel).where(
                    AIModel.model_id == model_id,
                    AIModel.is_active.is_(True),
                )
            )
            row = result.scalar_one_or_none()
            return _model_from_row(row) if row else None
        except Exception as e:
            logger.warning(f"Failed to load model {model_id}: {e}")
            return None

    async def get_similar_model(
        self,
        exclude_model_id: str,
        category: str,
        provider: str = DEFAULT_PROVIDER,
    ) -> Optional[ModelCandidate]:
        """Another active model tagged with the same category."""
        try:
            result = await self._execute(
                select(AIModel)
                .where(
                    func.lower(AIModel.provider) == provider.lower(),
                    AIModel.best_for == category,
                    AIModel.model_id != exclude_model_id,
                    AIModel.is_active.is_(True),
                )
                .order_by(AIModel.display_order)
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _model_from_row(row) if row else None
        except Exception as e:
            logger.warning(f"Failed to look up similar model for {exclude_model_id}: {e}")
            return None

    async def get_fallback_model(
        self,
        fallback_setting: Any = None,
    ) -> Optional[FallbackModelRef]:
        """Admin-configured fallback, then the default one, then any active one."""
        try:
            if (
                isinstance(fallback_setting, dict)
                and fallback_setting.get("enabled")
                and fallback_setting.get("model_id")
            ):
                row = (await self._execute(
                    select(FallbackModel).where(
                        FallbackModel.model_id == fallback_setting["model_id"],
                        FallbackModel.is_active.is_(True),
                    )
                )).scalar_one_or_none()
                if row:
                    return FallbackModelRef(model_id=row.model_id, provider=row.provider)

            row = (await self._execute(
                select(FallbackModel)
                .where(FallbackModel.is_default.is_(True), FallbackModel.is_active.is_(True))
                .limit(1)
            )).scalar_one_or_none()
            if row:
                return FallbackModelRef(model_id=row.model_id, provider=row.provider)

            row = (await self._execute(
                select(FallbackModel).where(FallbackModel.is_active.is_(True)).limit(1)
            )).scalar_one_or_none()
            if row:
                return FallbackModelRef(model_id=row.model_id, provider=row.provider)
        except Exception as e:
            logger.warning(f"Failed to load fallback model: {e}")
        return None

    async def load_image_models(self) -> LoadResult[list[ModelCandidate]]:
        """Active image-generation models in display order."""
        try:
            result = await self._execute(
                select(AIModel)
                .where(
                    AIModel.best_for == IMAGE_GENERATION_CATEGORY,
                    AIModel.is_active.is_(True),
                )
                .order_by(AIModel.display_order)
            )
            return LoadResult.success([_model_from_row(r) for r in result.scalars().all()])
        except Exception as e:
            logger.error(f"Failed to load image models: {e}")
            return LoadResult.failure([], "ai_models", e)

    # -------------------------------------------------------------------------
    # Settings and context sources
    # -------------------------------------------------------------------------

    async def load_settings(self) -> LoadResult[dict[str, Any]]:
        """All admin settings as ``{setting_key: setting_value}``."""
        try:
            result = await self._execute(select(SystemSetting))
            return LoadResult.success({
                row.setting_key: row.setting_value for row in result.scalars().all()
            })
        except Exception as e:
            logger.error(f"Failed to load system settings: {e}")
            return LoadResult.failure({}, "system_settings", e)

    async def get_persona_prompt(self, persona_id: str) -> Optional[str]:
        try:
            row = await self._get(Persona, persona_id)
        except Exception as e:
            logger.warning(f"Error fetching persona {persona_id}: {e}")
            return None
        return row.system_prompt if row and row.system_prompt else None

    async def get_personal_context(self, user_id: str) -> Optional[str]:
        try:
            row = await self._get(UserSetting, user_id)
        except Exception as e:
            logger.warning(f"Error fetching personal context: {e}")
            return None
        return row.personal_context if row and row.personal_context else None

    async def list_knowledge_base(
        self,
        workspace_id: str,
        limit: int = KNOWLEDGE_BASE_LIMIT,
    ) -> LoadResult[list[dict[str, Any]]]:
        """Most recent documents of a workspace (for prompt context)."""
        try:
            result = await self._execute(
                select(KnowledgeBaseDocument)
                .where(KnowledgeBaseDocument.workspace_id == workspace_id)
                .order_by(KnowledgeBaseDocument.created_at.desc())
                .limit(limit)
            )
            return LoadResult.success([
                {"id": d.id, "title": d.title, "content": d.content}
                for d in result.scalars().all()
            ])
        except Exception as e:
            logger.warning(f"Error fetching knowledge base: {e}")
            return LoadResult.failure([], "knowledge_base", e)

    async def search_knowledge_base(
        self,
        workspace_id: str,
        query: str,
        limit: int = KNOWLEDGE_BASE_LIMIT,
    ) -> LoadResult[list[dict[str, Any]]]:
        """
        Term search over a workspace's documents.

        Portable stand-in for Postgres full-text search: a document matches
        when its content contains any query term (case-insensitive).  An
        empty term list returns no documents.
        """
        terms = search_terms(query)
        if not terms:
            return LoadResult.success([])
        try:
            result = await self._execute(
                select(KnowledgeBaseDocument)
                .where(
                    KnowledgeBaseDocument.workspace_id == workspace_id,
                    or_(*[KnowledgeBaseDocument.content.ilike(f"%{t}%") for t in terms]),
                )
                .limit(limit)
            )
            return LoadResult.success([
                {
                    "id": d.id,
                    "title": d.title,
                    "content": d.content,
                    "file_name": d.file_name,
                }
                for d in result.scalars().all()
            ])
        except Exception as e:
            logger.error(f"Knowledge base search error for workspace {workspace_id}: {e}")
            return LoadResult.failure([], "knowledge_base", e)

    async def load_knowledge_documents(
        self,
        workspace_id: str,
        user_id: Optional[str] = None,
        document_ids: Optional[list[str]] = None,
    ) -> LoadResult[list[dict[str, Any]]]:
        """Full documents of a workspace, optionally one user's or a chosen subset."""
        try:
            stmt = select(KnowledgeBaseDocument).where(KnowledgeBaseDocument.workspace_id == workspace_id)
            if user_id:
                stmt = stmt.where(KnowledgeBaseDocument.user_id == user_id)
            if document_ids:
                stmt = stmt.where(KnowledgeBaseDocument.id.in_(document_ids))
            result = await self._execute(stmt.order_by(KnowledgeBaseDocument.created_at))
            return LoadResult.success([
                {
                    "id": d.id,
                    "title": d.title,
                    "content": d.content,
                    "file_name": d.file_name,
                }
                for d in result.scalars().all()
            ])
        except Exception as e:
            logger.error(f"Failed to load documents for workspace {workspace_id}: {e}")
            return LoadResult.failure([], "knowledge_base", e)

    # -------------------------------------------------------------------------
    # Audit writes
    # -------------------------------------------------------------------------

    async def save_debug_log(
        self,
        debug: dict[str, Any],
        *,
        trace_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        user_id: Optional[str] = None,
        operation_type: str = "chat",
    ) -> bool:
        """Persist the debug bag. Returns False (and logs) on failure."""
        try:
            self.session.add(CosmoDebugLog(
                operation_type=operation_type,
                trace_id=trace_id,
                user_id=user_id,
                chat_id=chat_id,
                workspace_id=workspace_id,
                original_message=debug.get("original_message"),
                detected_intent=debug.get("detected_intent"),
                intent_patterns=list(debug.get("intent_patterns") or []),
                requested_model=debug.get("requested_model"),
                auto_select_enabled=bool(debug.get("auto_select_enabled")),
                context_sources=dict(debug.get("context_sources") or {}),
                system_prompt_preview=debug.get("system_prompt_preview"),
                full_system_prompt=debug.get("full_system_prompt"),
                selected_model=debug.get("selected_model"),
                model_provider=debug.get("model_provider"),
                tiers_attempted=list(debug.get("tiers_attempted") or []),
                fallback_used=bool(debug.get("fallback_used")),
                functions_invoked=list(debug.get("functions_invoked") or []),
                response_time_ms=int(debug.get("response_time_ms") or 0),
                prompt_tokens=debug.get("prompt_tokens"),
                completion_tokens=debug.get("completion_tokens"),
                total_tokens=debug.get("total_tokens"),
                cost=debug.get("cost"),
                success=bool(debug.get("success", True)),
                error_message=debug.get("error_message"),
            ))
            await self._flush()
            logger.debug("Debug log saved")
            return True
        except Exception as e:
            logger.error(f"Failed to save debug log: {e}")
            await self._rollback()
            return False

    async def log_usage(
        self,
        *,
        user_id: str,
        workspace_id: Optional[str],
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        cost: float,
        metadata: Optional[dict[str, Any]] = None,
        action: str = "chat_message",
    ) -> bool:
        """Record token usage and cost. Returns False (and logs) on failure."""
        try:
            self.session.add(UsageLog(
                user_id=user_id,
                workspace_id=workspace_id,
                action=action,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                cost=cost,
                usage_metadata=metadata or {},
            ))
            await self._flush()
            logger.info(f"Usage logged: user={user_id[:8]}... model={model} cost=${cost:.6f}")
            return True
        except Exception as e:
            logger.error(f"Failed to log usage: {e}")
            await self._rollback()
            return False
