"""Pytest configuration and fixtures."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from cosmo.api.routes import cosmo as cosmo_routes
from cosmo.config import settings
from cosmo.core.actions.resolver import reset_action_resolver
from cosmo.core.functions.tools import reset_tool_registry
from cosmo.core.intent.registry import reset_intent_registry
from cosmo.core.llm_client import LLMClient
from cosmo.core.tracing import clear_trace_context
from cosmo.db import database
from cosmo.db.database import Base, get_db
from cosmo.db.models import (
    AIModel,
    ChatFunction,
    CosmoActionMapping,
    CosmoIntent,
    FallbackModel,
    KnowledgeBaseDocument,
    Persona,
    SystemSetting,
)
from cosmo.main import app
from cosmo.services.store import CosmoStore


@pytest.fixture(autouse=True)
def _reset_process_singletons():
    """Intent/action caches, the tool registry and the trace context are process-wide."""
    reset_intent_registry()
    reset_action_resolver()
    reset_tool_registry()
    clear_trace_context()
    yield
    reset_intent_registry()
    reset_action_resolver()
    reset_tool_registry()
    clear_trace_context()


@pytest_asyncio.fixture
async def db_session():
    """Create an in-memory test database session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    old_engine = database._engine
    old_factory = database._async_session_factory
    database._engine = engine
    database._async_session_factory = async_session_factory
    try:
        async with async_session_factory() as session:
            async def override_get_db():
                yield session
            app.dependency_overrides[get_db] = override_get_db
            yield session
            app.dependency_overrides.clear()
    finally:
        database._engine = old_engine
        database._async_session_factory = old_factory
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session):
    """Async test client over the app, bound to the test database, rate limiting off."""
    cosmo_routes.limiter.enabled = False
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        cosmo_routes.limiter.enabled = True


@pytest.fixture
def store(db_session) -> CosmoStore:
    return CosmoStore(db_session)


@pytest.fixture
def api_keys(monkeypatch):
    """Provider keys so inference and the maps tool can build requests."""
    monkeypatch.setattr(settings, "openrouter_api_key", "test-openrouter-key")
    monkeypatch.setattr(settings, "lovable_api_key", "test-lovable-key")
    monkeypatch.setattr(settings, "google_maps_api_key", "test-maps-key")


# -----------------------------------------------------------------------------
# Outbound HTTP
# -----------------------------------------------------------------------------


def completion_body(content: str, model: str = "test/model") -> dict[str, Any]:
    return {
        "id": "gen-123",
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 8},
    }


def image_body(url: str) -> dict[str, Any]:
    return {
        "id": "gen-img",
        "choices": [{
            "message": {
                "role": "assistant",
                "content": "Here is your image.",
                "images": [{"type": "image_url", "image_url": {"url": url}}],
            },
            "finish_reason": "stop",
        }],
    }


@pytest.fixture
def make_llm() -> Callable[..., LLMClient]:
    """
    Build an ``LLMClient`` over ``httpx.MockTransport``.

    ``handler(request, payload)`` returns an ``httpx.Response``; every
    request payload is appended to ``client.sent``.
    """
    def _make(handler: Callable[[httpx.Request, dict[str, Any]], httpx.Response]) -> LLMClient:
        sent: list[dict[str, Any]] = []

        def _transport(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content or b"{}")
            sent.append(payload)
            return handler(request, payload)

        llm = LLMClient(transport=httpx.MockTransport(_transport))
        llm.sent = sent  # type: ignore[attr-defined]
        return llm

    return _make


@pytest.fixture
def answering_llm(make_llm) -> LLMClient:
    """Every call succeeds with the same assistant answer."""
    return make_llm(lambda request, payload: httpx.Response(
        200, json=completion_body("Here is the answer.", payload.get("model", "")),
    ))


# -----------------------------------------------------------------------------
# Seed data
# -----------------------------------------------------------------------------


@pytest_asyncio.fixture
async def seed_intents(db_session):
    db_session.add_all([
        CosmoIntent(
            intent_key="coding",
            display_name="Code Assistance",
            category="coding",
            keywords=["code", "error", "debug", "function"],
            required_functions=["chat"],
            context_needs=["history"],
            priority=60,
        ),
        CosmoIntent(
            intent_key="location_search",
            display_name="Location Search",
            category="location",
            keywords=["near", "restaurant", "directions"],
            required_functions=["maps", "chat"],
            context_needs=[],
            priority=50,
        ),
        CosmoIntent(
            intent_key="knowledge_lookup",
            display_name="Knowledge Lookup",
            category="knowledge",
            keywords=["document", "policy", "handbook"],
            required_functions=["knowledge_base", "chat"],
            context_needs=["knowledge_base"],
            priority=50,
        ),
        CosmoIntent(
            intent_key="creative",
            display_name="Creative Writing",
            category="creative",
            keywords=["story", "poem", "write"],
            required_functions=["chat"],
            context_needs=["persona"],
            priority=50,
        ),
    ])
    await db_session.commit()


@pytest_asyncio.fixture
async def seed_functions(db_session):
    db_session.add_all([
        ChatFunction(function_key="chat", name="Chat", tags=["conversation"], display_order=0),
        ChatFunction(
            function_key="maps",
            name="Maps",
            description="Find places and directions for location queries",
            tags=["location", "places"],
            display_order=1,
        ),
        ChatFunction(
            function_key="knowledge_base",
            name="Knowledge Base",
            description="Search workspace knowledge documents",
            tags=["knowledge", "documents"],
            display_order=2,
        ),
        ChatFunction(function_key="web_search", name="Web Search", tags=["research"], display_order=3),
    ])
    await db_session.commit()


@pytest_asyncio.fixture
async def seed_models(db_session):
    """Three coding models priced 0 / 5 / 10 plus a general one and a fallback."""
    db_session.add_all([
        AIModel(model_id="free/coder", name="Free Coder", best_for="coding", is_free=True, display_order=0),
        AIModel(
            model_id="mid/coder", name="Mid Coder", best_for="coding",
            pricing_prompt=2.0, pricing_completion=3.0, display_order=1,
        ),
        AIModel(
            model_id="top/coder", name="Top Coder", best_for="coding",
            pricing_prompt=4.0, pricing_completion=6.0, default_max_tokens=4096,
            default_temperature=0.2, display_order=2,
        ),
        AIModel(
            model_id="general/chat", name="General Chat", best_for="general",
            pricing_prompt=1.0, pricing_completion=1.0, display_order=3,
        ),
        FallbackModel(model_id="fallback/model", provider="Lovable AI", is_default=True),
    ])
    await db_session.commit()


@pytest_asyncio.fixture
async def seed_settings(db_session):
    """Routing enabled at the balanced weight, a default and a fallback model."""
    db_session.add_all([
        SystemSetting(
            setting_key="cosmo_routing_config",
            setting_value={
                "enabled": True,
                "model_id": "classifier/model",
                "provider": "OpenRouter",
                "cost_performance_weight": 50,
                "system_prompt": "Classify the prompt.",
                "available_categories": ["coding", "creative", "general"],
                "fallback_category": "general",
            },
        ),
        SystemSetting(setting_key="default_model", setting_value={"model_id": "general/chat", "provider": "OpenRouter"}),
        SystemSetting(setting_key="fallback_model", setting_value={"enabled": True, "model_id": "fallback/model"}),
        SystemSetting(
            setting_key="response_formatting_rules",
            setting_value={"enabled": True, "rules": "Use markdown."},
        ),
    ])
    await db_session.commit()


@pytest_asyncio.fixture
async def seed_actions(db_session):
    db_session.add_all([
        CosmoActionMapping(
            intent_key="location_search",
            action_key="lookup_places",
            action_type="function",
            action_config={"function_key": "maps"},
            parameter_patterns={"place": r"near\s+(\w+)"},
            priority=80,
        ),
        CosmoActionMapping(
            intent_key="*",
            action_key="answer",
            action_type="model_call",
            action_config={},
            priority=10,
        ),
        CosmoActionMapping(
            intent_key="nightly_digest",
            action_key="search_docs",
            action_type="function",
            action_config={"function_key": "knowledge_base"},
            priority=70,
        ),
    ])
    await db_session.commit()


@pytest_asyncio.fixture
async def seed_knowledge(db_session):
    db_session.add_all([
        Persona(id="persona-1", name="Pirate", system_prompt="Talk like a pirate."),
        KnowledgeBaseDocument(
            workspace_id="ws-1",
            title="Travel Policy",
            file_name="travel.md",
            content="Employees book travel through the portal. Expense policy applies.",
        ),
        KnowledgeBaseDocument(
            workspace_id="ws-1",
            title="Onboarding",
            file_name="onboarding.md",
            content="Welcome aboard. Read the handbook first.",
        ),
        KnowledgeBaseDocument(
            workspace_id="ws-2",
            title="Other Workspace",
            content="Travel details for another team.",
        ),
    ])
    await db_session.commit()
