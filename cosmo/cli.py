"""COSMO CLI: Typer application root.

Entry point for the ``cosmo`` console script: operator commands for
inspecting routing tiers, intent analysis and function selection against
the configured database, and for creating the schema.
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer

from cosmo.core.functions.selector import select_functions
from cosmo.core.intent.analyzer import analyze_intent
from cosmo.core.routing.router import get_cost_tier, get_cost_tier_label
from cosmo.db import AsyncSessionLocal, close_db, init_db
from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExitCode(enum.IntEnum):
    """CLI exit codes.

    0: success
    1: user error (bad arguments, invalid input)
    3: internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    INTERNAL_ERROR = 3


cli = typer.Typer(
    name="cosmo",
    help="COSMO request orchestration operator tools.",
    no_args_is_help=True,
)


def _run_with_store(name: str, work: Callable[[CosmoStore], Awaitable[T]]) -> T:
    """Open the configured database, run ``work`` and map failures to exit codes."""

    async def _run() -> T:
        await init_db(create_schema=False)
        try:
            async with AsyncSessionLocal() as session:
                return await work(CosmoStore(session))
        finally:
            await close_db()

    try:
        return asyncio.run(_run())
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"cosmo {name} failed: {exc}")
        logger.error("cosmo %s error: %s", name, exc, exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR)


def _require_prompt(prompt: str) -> str:
    if not prompt.strip():
        typer.echo("❌ Prompt must not be empty.")
        raise typer.Exit(code=ExitCode.USER_ERROR)
    return prompt


def _echo_json(data: dict[str, Any]) -> None:
    typer.echo(json.dumps(data, indent=2))


@cli.command("tier", help="Show the cost tier for a cost-performance weight (0-100).")
def tier(weight: int = typer.Argument(..., help="Cost-performance weight, 0 (cheapest) to 100 (best).")) -> None:
    if not 0 <= weight <= 100:
        typer.echo(f"❌ Weight must be between 0 and 100, got {weight}.")
        raise typer.Exit(code=ExitCode.USER_ERROR)
    typer.echo(f"{get_cost_tier(weight).value} ({get_cost_tier_label(weight)})")


@cli.command("analyze", help="Run local intent detection for a prompt and print it as JSON.")
def analyze(prompt: str = typer.Argument(..., help="Prompt to classify.")) -> None:
    _require_prompt(prompt)

    async def _work(store: CosmoStore) -> dict[str, Any]:
        return (await analyze_intent(prompt, store)).to_dict()

    _echo_json(_run_with_store("analyze", _work))


@cli.command("functions", help="Analyze a prompt and print the selected functions as JSON.")
def functions(prompt: str = typer.Argument(..., help="Prompt to plan functions for.")) -> None:
    _require_prompt(prompt)

    async def _work(store: CosmoStore) -> dict[str, Any]:
        intent = await analyze_intent(prompt, store)
        selection = await select_functions(intent, store)
        return {"intent": intent.to_dict(), "selection": selection.to_dict()}

    _echo_json(_run_with_store("functions", _work))


@cli.command("init-db", help="Create the database schema (missing tables only).")
def init_database() -> None:
    async def _run() -> None:
        await init_db(create_schema=True)
        await close_db()

    try:
        asyncio.run(_run())
    except Exception as exc:
        typer.echo(f"cosmo init-db failed: {exc}")
        logger.error("cosmo init-db error: %s", exc, exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR)
    typer.echo("✅ Database schema ready.")


if __name__ == "__main__":
    cli()
