from __future__ import annotations

import dataclasses
import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from vibeboard.actors.defaults import DEFAULT_PROMPTS, default_settings
from vibeboard.config import EngineConfig
from vibeboard.execution.base import CodeExecutor
from vibeboard.gateway.base import GenerationRequest, TextGenerationGateway
from vibeboard.gateway.queue import RateLimitedCallQueue
from vibeboard.models import (
    ActorKind,
    ActorSettings,
    ActorType,
    Entry,
    EntryType,
    Table,
    Task,
    TaskStatus,
    utcnow,
)
from vibeboard.state.store import BoardStore

EventHook = Callable[[dict[str, Any]], None]

_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


class ActorDisabledError(RuntimeError):
    """Raised before any task mutation when the actor is switched off."""

    def __init__(self, message: str, *, actor_key: str) -> None:
        super().__init__(message)
        self.actor_key = actor_key


class TaskTransitionError(RuntimeError):
    """Raised on a status change the task lifecycle does not allow."""

    def __init__(
        self, message: str, *, task_id: str, current: TaskStatus, target: TaskStatus
    ) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.current = current
        self.target = target


@dataclass(slots=True)
class ActorContext:
    """Collaborators shared by every actor of one engine."""

    store: BoardStore
    gateway: TextGenerationGateway
    call_queue: RateLimitedCallQueue
    config: EngineConfig = field(default_factory=EngineConfig)
    executor: CodeExecutor | None = None
    event_hook: EventHook | None = None

    def emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)


def result_payload(result: Any) -> Any:
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return dataclasses.asdict(result)
    return result


def render_dependency_context(dependency_results: list[dict[str, Any]]) -> str:
    if not dependency_results:
        return ""
    return json.dumps(dependency_results, ensure_ascii=False, indent=2, default=str)


class Actor(ABC):
    kind: ActorKind = ActorKind.CUSTOM
    table_name: str = "results"
    table_description: str = ""

    def __init__(self, context: ActorContext, *, actor_type: ActorType | None = None) -> None:
        self.context = context
        self.actor_type = actor_type or ActorType(self.kind)
        self.settings = default_settings(self.kind).merged(
            context.config.actor_overrides(self.actor_key)
        )

    @property
    def actor_key(self) -> str:
        return self.actor_type.key

    @property
    def store(self) -> BoardStore:
        return self.context.store

    @property
    def system_prompt(self) -> str:
        return self.settings.custom_instructions.strip() or DEFAULT_PROMPTS[self.kind]

    @abstractmethod
    async def execute(self, task: Task) -> Any:
        """Run the actor-specific work and return a typed result."""

    def reload_settings(self) -> ActorSettings:
        settings = default_settings(self.kind)
        settings = settings.merged(self.context.config.actor_overrides(self.actor_key))
        settings = settings.merged(self.store.get_actor_settings(self.actor_key))
        self.settings = settings
        logger.debug(f"Loaded settings for {self.actor_key}: enabled={settings.enabled}")
        return settings

    def _ensure_enabled(self) -> None:
        if not self.settings.enabled:
            raise ActorDisabledError(
                f"Actor {self.actor_key} is disabled", actor_key=self.actor_key
            )

    async def execute_task(self, task: Task, *, retrying: bool = False) -> Any:
        """Run ``task`` through the full lifecycle and return the typed result.

        ``retrying`` lets a task that already reached a terminal state start
        again; only the composer's retry loop passes it.
        """
        self._ensure_enabled()
        self.reload_settings()
        self._ensure_enabled()

        self.transition(task, TaskStatus.IN_PROGRESS, retrying=retrying)
        logger.info(f"[{self.actor_key}] started {task.id}: {task.title}")
        self.context.emit({"event": "task_started", "task_id": task.id, "actor": self.actor_key})
        try:
            result = await self.execute(task)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self.transition(task, TaskStatus.FAILED, error=message)
            logger.error(f"[{self.actor_key}] failed {task.id}: {message}")
            self.context.emit(
                {
                    "event": "task_failed",
                    "task_id": task.id,
                    "actor": self.actor_key,
                    "error": message,
                }
            )
            raise

        self.transition(task, TaskStatus.COMPLETED, result=result_payload(result))
        logger.info(f"[{self.actor_key}] completed {task.id}")
        self.context.emit({"event": "task_completed", "task_id": task.id, "actor": self.actor_key})
        return result

    def transition(
        self,
        task: Task,
        status: TaskStatus,
        *,
        result: Any = None,
        error: str | None = None,
        retrying: bool = False,
    ) -> Task:
        """Move ``task`` to ``status`` and persist it; the only writer of task state."""
        allowed = _TRANSITIONS[task.status]
        reopening = retrying and task.status.terminal and status in (
            TaskStatus.IN_PROGRESS,
            TaskStatus.FAILED,
        )
        if status not in allowed and not reopening:
            raise TaskTransitionError(
                f"Task {task.id} cannot move from {task.status.value} to {status.value}",
                task_id=task.id,
                current=task.status,
                target=status,
            )
        now = utcnow()
        task.status = status
        if status is TaskStatus.IN_PROGRESS:
            task.started_at = now
            task.completed_at = None
            task.error = None
        elif status is TaskStatus.COMPLETED:
            task.result = result
            task.error = None
            task.completed_at = now
        elif status is TaskStatus.FAILED:
            task.error = error or "unknown error"
            task.completed_at = now
        self.store.update_task(task)
        return task

    async def generate_completion(
        self,
        prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        provider = self.context.config.provider
        request = GenerationRequest(
            prompt=prompt,
            max_tokens=max_tokens or self.settings.max_tokens,
            temperature=self.settings.temperature if temperature is None else temperature,
        )
        model_hint = self.settings.model_id or provider.model or None
        safety_hint = provider.safety_threshold or None

        async def _call():
            return await self.context.gateway.generate(
                provider.provider_id,
                provider.credential(),
                request,
                model_hint=model_hint,
                safety_hint=safety_hint,
            )

        response = await self.context.call_queue.enqueue(_call)
        return response.text

    def create_table(
        self,
        task: Task,
        name: str | None = None,
        description: str | None = None,
        schema: dict[str, str] | None = None,
    ) -> Table:
        return self.store.create_table(
            task.board_id,
            name or self.table_name,
            description if description is not None else self.table_description,
            schema,
        )

    def create_entry(
        self,
        table: Table,
        task: Task,
        type: EntryType,
        key: str,
        value: Any,
        metadata: dict[str, Any] | None = None,
    ) -> Entry:
        return self.store.create_entry(table.id, task.id, type, key, value, metadata)

    def entries_for_task(self, task_id: str) -> list[Entry]:
        return self.store.get_entries_for_task(task_id)

    def entries_for_table(self, table_id: str) -> list[Entry]:
        return self.store.get_entries_for_table(table_id)

    def gather_dependency_results(self, task: Task) -> list[dict[str, Any]]:
        """Collect each dependency's RESULT entry, or its raw result, plus its other entries."""
        gathered: list[dict[str, Any]] = []
        for dependency_id in task.dependencies:
            dependency = self.store.get_task_from_board(task.board_id, dependency_id)
            if dependency is None:
                logger.warning(f"Dependency {dependency_id} of {task.id} not found")
                continue
            entries = self.entries_for_task(dependency_id)
            result_entry = next(
                (entry for entry in entries if entry.type is EntryType.RESULT), None
            )
            additional = {
                entry.key: entry.value for entry in entries if entry.type is not EntryType.RESULT
            }
            gathered.append(
                {
                    "task_id": dependency.id,
                    "title": dependency.title,
                    "actor_type": str(dependency.actor_type),
                    "result": result_entry.value if result_entry else dependency.result,
                    "additional_data": additional,
                }
            )
        return gathered

    def update_instructions(self, instructions: str) -> ActorSettings:
        persisted = self.store.get_actor_settings(self.actor_key) or {}
        persisted["custom_instructions"] = instructions
        self.store.save_actor_settings(self.actor_key, persisted)
        self.settings = self.settings.merged({"custom_instructions": instructions})
        return self.settings
