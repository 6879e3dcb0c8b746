"""
Prompt enhancement for the chat path.

Builds the system prompt from admin settings, the request's workspace
context and the context sources the intent asked for, then appends any
function results.  The ``pre_message_config`` setting can switch
individual sources off; absent config means every source is allowed.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from cosmo.contracts.requests import NormalizedRequest
from cosmo.core.intent.analyzer import needs_context
from cosmo.core.intent.models import ContextNeed, IntentAnalysis

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Keep answers clear and concise."
KNOWLEDGE_BASE_EXCERPT_CHARS = 1000
DEFAULT_MAX_HISTORY_MESSAGES = 20
FUNCTION_RESULTS_HEADER = "--- Function Results (use this data in your response) ---"

ENHANCEMENT_HINTS: dict[str, str] = {
    "elaborate": "Give a thorough, detailed explanation.",
    "include_examples": "Include concrete examples.",
    "step_by_step": "Break the answer into numbered steps.",
}


@dataclass
class PromptContext:
    formatting_rules: Optional[str] = None
    ai_instructions: Optional[str] = None
    space_ai_instructions: Optional[str] = None
    compliance_rule: Optional[str] = None
    persona_prompt: Optional[str] = None
    personal_context: Optional[str] = None
    knowledge_base_context: Optional[str] = None
    history_messages: list[dict[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class ContextSources:
    """Which sources made it into the prompt (recorded in the debug log)."""
    formatting_rules: bool = False
    ai_instructions: bool = False
    space_ai_instructions: bool = False
    compliance_rule: bool = False
    persona: bool = False
    personal_context: bool = False
    knowledge_base: bool = False
    history: bool = False
    history_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnhancedPrompt:
    system_prompt: str
    messages: list[dict[str, str]]
    context_sources: ContextSources


def _enabled_text(setting: Any, key: str) -> Optional[str]:
    if isinstance(setting, dict) and setting.get("enabled") and setting.get(key):
        return str(setting[key])
    return None


def _include(config: dict[str, Any], flag: str) -> bool:
    return bool(config.get(flag, True))


async def build_context(
    request: NormalizedRequest,
    intent: IntentAnalysis,
    system_settings: dict[str, Any],
    store: "CosmoStore",
) -> PromptContext:
    """Collect every context source this request is entitled to."""
    pre_message = system_settings.get("pre_message_config")
    pre_message = pre_message if isinstance(pre_message, dict) else {}
    in_workspace = request.is_workspace_request
    space = request.space_context
    context = PromptContext()

    context.formatting_rules = _enabled_text(system_settings.get("response_formatting_rules"), "rules")

    if in_workspace and space and space.ai_instructions:
        context.space_ai_instructions = space.ai_instructions
    elif not in_workspace:
        context.ai_instructions = _enabled_text(system_settings.get("ai_instructions"), "instructions")

    if in_workspace and space and space.compliance_rule:
        context.compliance_rule = space.compliance_rule

    if (
        _include(pre_message, "include_persona")
        and request.persona_id
        and needs_context(intent, ContextNeed.PERSONA)
    ):
        context.persona_prompt = await store.get_persona_prompt(request.persona_id)

    if (
        _include(pre_message, "include_personal_context")
        and not in_workspace
        and request.user_id
        and needs_context(intent, ContextNeed.PERSONAL_CONTEXT)
    ):
        context.personal_context = await store.get_personal_context(request.user_id)

    workspace_id = request.workspace_id
    if (
        _include(pre_message, "include_knowledge_base")
        and workspace_id
        and needs_context(intent, ContextNeed.KNOWLEDGE_BASE)
    ):
        documents = (await store.list_knowledge_base(workspace_id)).value
        if documents:
            context.knowledge_base_context = "\n\n".join(
                f"[{d['title']}]: {(d['content'] or '')[:KNOWLEDGE_BASE_EXCERPT_CHARS]}"
                for d in documents
            )

    if _include(pre_message, "include_history") and needs_context(intent, ContextNeed.HISTORY):
        limit = int(pre_message.get("max_history_messages") or DEFAULT_MAX_HISTORY_MESSAGES)
        context.history_messages = [
            {"role": m.role, "content": m.content} for m in request.history[-limit:]
        ]

    return context


def assemble_system_prompt(context: PromptContext) -> str:
    parts: list[str] = []
    if context.formatting_rules:
        parts.append(context.formatting_rules)
    if context.space_ai_instructions:
        parts.append(context.space_ai_instructions)
    elif context.ai_instructions:
        parts.append(context.ai_instructions)
    if context.compliance_rule:
        parts.append(f"Compliance Rule: {context.compliance_rule}")
    if context.persona_prompt:
        parts.append(f"Persona Instructions: {context.persona_prompt}")
    if context.personal_context:
        parts.append(f"User Context: {context.personal_context}")
    if context.knowledge_base_context:
        parts.append(f"Knowledge Base Context:\n{context.knowledge_base_context}")
    return "\n\n".join(parts) if parts else DEFAULT_SYSTEM_PROMPT


def format_function_results(function_results: dict[str, Any]) -> str:
    blocks = []
    for key, value in function_results.items():
        rendered = json.dumps(value, indent=2, default=str) if isinstance(value, (dict, list)) else str(value)
        blocks.append(f"[Function: {key}]\n{rendered}")
    return f"{FUNCTION_RESULTS_HEADER}\n" + "\n\n".join(blocks)


def context_sources(context: PromptContext) -> ContextSources:
    return ContextSources(
        formatting_rules=bool(context.formatting_rules),
        ai_instructions=bool(context.ai_instructions),
        space_ai_instructions=bool(context.space_ai_instructions),
        compliance_rule=bool(context.compliance_rule),
        persona=bool(context.persona_prompt),
        personal_context=bool(context.personal_context),
        knowledge_base=bool(context.knowledge_base_context),
        history=bool(context.history_messages),
        history_count=len(context.history_messages),
    )


def request_messages(request: NormalizedRequest) -> list[dict[str, str]]:
    """
    The caller's turn: explicit messages ending on ``content`` as a user message.

    ``content`` is the text every earlier stage analyzed, so it is appended
    unless the conversation already ends on that exact user turn.
    """
    messages = [{"role": m.role, "content": m.content} for m in request.messages]
    prompt = {"role": "user", "content": request.content}
    if request.content and (not messages or messages[-1] != prompt):
        messages.append(prompt)
    return messages


async def enhance_prompt(
    request: NormalizedRequest,
    intent: IntentAnalysis,
    system_settings: dict[str, Any],
    store: "CosmoStore",
    function_results: Optional[dict[str, Any]] = None,
) -> EnhancedPrompt:
    """System prompt plus the message list for the inference call."""
    context = await build_context(request, intent, system_settings, store)
    system_prompt = assemble_system_prompt(context)

    if function_results:
        logger.debug(f"Injecting {len(function_results)} function results into the prompt")
        system_prompt += "\n\n" + format_function_results(function_results)

    hints = [ENHANCEMENT_HINTS[h] for h in intent.suggested_enhancements if h in ENHANCEMENT_HINTS]
    if hints:
        system_prompt += "\n\nResponse Guidance: " + " ".join(hints)

    messages = context.history_messages + request_messages(request)
    sources = context_sources(context)
    logger.info(
        f"Prompt enhanced: {len(system_prompt)} chars, {len(messages)} messages, "
        f"{len(function_results or {})} function results"
    )
    return EnhancedPrompt(system_prompt=system_prompt, messages=messages, context_sources=sources)


def preview_context_sources(intent: IntentAnalysis, in_workspace: bool) -> list[str]:
    """Sources the intent would pull in (debug tooling)."""
    sources = []
    if needs_context(intent, ContextNeed.PERSONA):
        sources.append(ContextNeed.PERSONA.value)
    if needs_context(intent, ContextNeed.HISTORY):
        sources.append(ContextNeed.HISTORY.value)
    if not in_workspace and needs_context(intent, ContextNeed.PERSONAL_CONTEXT):
        sources.append(ContextNeed.PERSONAL_CONTEXT.value)
    if in_workspace and needs_context(intent, ContextNeed.KNOWLEDGE_BASE):
        sources.append(ContextNeed.KNOWLEDGE_BASE.value)
    return sources
