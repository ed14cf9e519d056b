from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click
from loguru import logger

from vibeboard.actors import (
    ActorContext,
    ActorRegistry,
    ComposerResult,
    CompositionError,
    default_registry,
)
from vibeboard.actors.base import ActorDisabledError
from vibeboard.actors.custom import resolve_custom_settings
from vibeboard.actors.defaults import ACTOR_DESCRIPTIONS, default_settings
from vibeboard.actors.registry import UnknownActorError
from vibeboard.config import EngineConfig, load_config, save_config
from vibeboard.execution import LocalKernelExecutor
from vibeboard.gateway import GatewayError, OpenAIGateway, RateLimitedCallQueue
from vibeboard.models import (
    ActorKind,
    ActorSettings,
    ActorType,
    CustomActorDefinition,
    Priority,
    Task,
)
from vibeboard.state import JsonBoardStore, StoreError

ENGINE_ERRORS = (
    ActorDisabledError,
    CompositionError,
    GatewayError,
    StoreError,
    UnknownActorError,
)


@dataclass(slots=True)
class Runtime:
    workdir: Path
    config_path: Path
    config: EngineConfig
    store: JsonBoardStore
    context: ActorContext
    registry: ActorRegistry


def _resolve_config_path(workdir: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = workdir / config_path
    return config_path.resolve()


def _resolve_store_path(workdir: Path, config: EngineConfig) -> Path:
    store_path = Path(config.store.path)
    if not store_path.is_absolute():
        store_path = workdir / store_path
    return store_path


def _configure_logging(config: EngineConfig, workdir: Path) -> None:
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)
    if config.logging.file:
        log_path = Path(config.logging.file)
        if not log_path.is_absolute():
            log_path = workdir / log_path
        logger.add(log_path, level=config.logging.level, encoding="utf-8")


def _render_event(event: dict[str, Any]) -> None:
    name = event.get("event", "event")
    details = " ".join(f"{key}={value}" for key, value in event.items() if key != "event")
    click.echo(f"[{name}] {details}".rstrip(), err=True)


def _load_runtime(workdir: Path, config_path: Path) -> Runtime:
    config = load_config(config_path)
    _configure_logging(config, workdir)
    store = JsonBoardStore(_resolve_store_path(workdir, config))
    executor = None
    if config.execution.enabled:
        executor = LocalKernelExecutor(
            python_binary=config.execution.python_binary or None,
            timeout_seconds=max(1.0, float(config.execution.timeout_seconds)),
            working_directory=workdir,
            event_hook=_render_event,
        )
    context = ActorContext(
        store=store,
        gateway=OpenAIGateway(base_url=config.provider.base_url or None),
        call_queue=RateLimitedCallQueue(
            config.rate_limit.min_interval_seconds, event_hook=_render_event
        ),
        config=config,
        executor=executor,
        event_hook=_render_event,
    )
    return Runtime(
        workdir=workdir,
        config_path=config_path,
        config=config,
        store=store,
        context=context,
        registry=default_registry(context),
    )


def _parse_actor_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    values = [item.strip().lower() for item in raw.split(",") if item.strip()]
    plannable = {kind.value for kind in ActorKind} - {"planner", "composer", "custom"}
    for value in values:
        if value not in plannable and not value.startswith("custom:"):
            raise click.BadParameter(f"Unknown actor type: {value}", param_hint="--actors")
    return values


def _settings_view(key: str, settings: ActorSettings) -> dict[str, Any]:
    payload = settings.to_dict()
    payload["key"] = key
    payload["has_custom_instructions"] = bool(payload.pop("custom_instructions"))
    return payload


@click.group()
def cli() -> None:
    """Vibeboard CLI."""


@cli.command("init")
@click.option("--provider", type=click.Choice(["openai", "ollama"]), default=None)
@click.option("--config", "config_value", default="vibeboard.toml", show_default=True)
def init_command(provider: str | None, config_value: str) -> None:
    workdir = Path.cwd().resolve()
    config_path = _resolve_config_path(workdir, config_value)
    config = load_config(config_path)
    if provider:
        config.provider.provider_id = provider  # type: ignore[assignment]
        if provider == "ollama":
            config.provider.api_key_env = ""
    save_config(config_path, config)

    store = JsonBoardStore(_resolve_store_path(workdir, config))
    click.echo(f"Initialized Vibeboard in {workdir}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Store: {store.root}")
    click.echo(f"Provider: {config.provider.provider_id}")


@cli.command("run")
@click.argument("goal")
@click.option("--board", "board_id", default=None, help="Board to run on; created if missing.")
@click.option("--actors", "actors_value", default=None, help="Comma-separated actor types.")
@click.option("--config", "config_value", default="vibeboard.toml", show_default=True)
def run_command(
    goal: str, board_id: str | None, actors_value: str | None, config_value: str
) -> None:
    workdir = Path.cwd().resolve()
    runtime = _load_runtime(workdir, _resolve_config_path(workdir, config_value))
    allowed = _parse_actor_list(actors_value)

    board = runtime.store.get_board(board_id) if board_id else None
    if board is None:
        board = runtime.store.create_board(goal[:80], board_id=board_id)

    metadata: dict[str, Any] = {}
    if allowed:
        metadata["allowed_actors"] = allowed
    task = Task(
        board_id=board["id"],
        title=f"Compose: {goal[:60]}",
        description=goal,
        actor_type=ActorType(ActorKind.COMPOSER),
        priority=Priority.HIGH,
        metadata=metadata,
    )
    runtime.store.create_task(task)
    composer = runtime.registry.create(task.actor_type)
    try:
        result: ComposerResult = asyncio.run(composer.execute_task(task))
    except ENGINE_ERRORS as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Board: {board['id']}")
    click.echo(result.summary)
    click.echo(
        f"Tasks: {len(result.completed)} completed, {len(result.failed)} failed, "
        f"{len(result.unexecuted)} not executed"
    )
    if result.aborted:
        raise click.ClickException("Run aborted after a root task failed.")


@cli.command("status")
@click.option("--board", "board_id", default=None)
@click.option("--config", "config_value", default="vibeboard.toml", show_default=True)
def status_command(board_id: str | None, config_value: str) -> None:
    workdir = Path.cwd().resolve()
    runtime = _load_runtime(workdir, _resolve_config_path(workdir, config_value))
    if board_id:
        board = runtime.store.get_board(board_id)
        if board is None:
            raise click.ClickException(f"Unknown board: {board_id}")
        boards = [board]
    else:
        boards = runtime.store.list_boards()

    payload = []
    for board in boards:
        tasks = runtime.store.list_tasks(board["id"])
        payload.append(
            {
                "board": board,
                "tasks": [
                    {
                        "id": task.id,
                        "title": task.title,
                        "actor_type": str(task.actor_type),
                        "status": task.status.value,
                        "dependencies": task.dependencies,
                        "error": task.error,
                    }
                    for task in tasks
                ],
                "tables": [table.name for table in runtime.store.list_tables(board["id"])],
            }
        )
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("actors")
@click.option("--config", "config_value", default="vibeboard.toml", show_default=True)
def actors_command(config_value: str) -> None:
    workdir = Path.cwd().resolve()
    runtime = _load_runtime(workdir, _resolve_config_path(workdir, config_value))
    rows = []
    for kind in runtime.registry.kinds():
        settings = default_settings(kind).merged(runtime.config.actor_overrides(kind.value))
        settings = settings.merged(runtime.store.get_actor_settings(kind.value))
        row = _settings_view(kind.value, settings)
        row["description"] = ACTOR_DESCRIPTIONS[kind]
        rows.append(row)
    for definition in runtime.store.list_custom_actors():
        key = ActorType(ActorKind.CUSTOM, definition.id).key
        row = _settings_view(key, resolve_custom_settings(runtime.context, definition))
        row["description"] = definition.description or definition.name
        rows.append(row)
    click.echo(json.dumps(rows, ensure_ascii=False, indent=2))


@cli.command("add-actor")
@click.argument("actor_id")
@click.option("--name", default=None)
@click.option("--description", default="")
@click.option("--instructions", default="")
@click.option("--config", "config_value", default="vibeboard.toml", show_default=True)
def add_actor_command(
    actor_id: str, name: str | None, description: str, instructions: str, config_value: str
) -> None:
    workdir = Path.cwd().resolve()
    runtime = _load_runtime(workdir, _resolve_config_path(workdir, config_value))
    definition = CustomActorDefinition(
        id=actor_id,
        name=name or actor_id,
        description=description,
        settings=default_settings(ActorKind.CUSTOM).merged(
            {"custom_instructions": instructions}
        ),
    )
    runtime.store.save_custom_actor(definition)
    click.echo(f"Saved custom actor {ActorType(ActorKind.CUSTOM, actor_id)}")


@cli.command("configure-actor")
@click.argument("actor_key")
@click.option("--enable/--disable", "enabled", default=None)
@click.option("--instructions", default=None)
@click.option("--config", "config_value", default="vibeboard.toml", show_default=True)
def configure_actor_command(
    actor_key: str, enabled: bool | None, instructions: str | None, config_value: str
) -> None:
    try:
        key = ActorType.parse(actor_key).key
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="ACTOR_KEY") from exc

    workdir = Path.cwd().resolve()
    config_path = _resolve_config_path(workdir, config_value)
    config = load_config(config_path)
    overrides = config.actors.setdefault(key, {})
    if enabled is not None:
        overrides["enabled"] = enabled
    if instructions is not None:
        overrides["custom_instructions"] = instructions
    save_config(config_path, config)
    click.echo(f"Actor {key}: {json.dumps(overrides, ensure_ascii=False)}")
