from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from vibeboard.actors.base import Actor, ActorContext, ActorDisabledError, result_payload
from vibeboard.actors.coder import AttemptContext, CodeResult
from vibeboard.graph import GraphNode, RepairReport, repair_dependency_graph
from vibeboard.models import (
    ActorKind,
    ActorType,
    EntryType,
    Priority,
    Table,
    Task,
    TaskPlan,
    TaskStatus,
)

if TYPE_CHECKING:
    from vibeboard.actors.registry import ActorRegistry

FORWARDED_METADATA = ("allowed_actors", "use_custom_instructions")


class CompositionError(RuntimeError):
    """Raised when no plan could be produced for a goal."""

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class RootTaskFailedError(RuntimeError):
    """Raised when a task without dependencies fails; the rest of the run is skipped."""

    def __init__(self, message: str, *, task_id: str, outcome: ScheduleOutcome) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.outcome = outcome


class CodeRetryExhaustedError(RuntimeError):
    """Raised when every coder attempt ended with a failing execution."""

    def __init__(
        self,
        message: str,
        *,
        task_id: str,
        attempts: int,
        last_error: str,
        last_result: CodeResult | None = None,
    ) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error
        self.last_result = last_result


@dataclass(slots=True)
class ScheduleOutcome:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    unexecuted: list[str] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ComposerResult:
    summary: str
    plan_summary: str
    tasks_created: int
    completed: list[str]
    failed: list[str]
    unexecuted: list[str]
    execution_results: dict[str, Any]
    aborted: bool = False
    repair: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "plan_summary": self.plan_summary,
            "tasks_created": self.tasks_created,
            "completed": list(self.completed),
            "failed": list(self.failed),
            "unexecuted": list(self.unexecuted),
            "execution_results": dict(self.execution_results),
            "aborted": self.aborted,
            "repair": dict(self.repair),
        }


class Composer(Actor):
    """Plans a goal, materializes the plan into tasks and runs them in dependency order."""

    kind = ActorKind.COMPOSER
    table_name = "tasks"
    table_description = "Task status and coordination information"
    table_schema = {"taskId": "string", "status": "string", "dependencies": "array"}

    def __init__(
        self,
        context: ActorContext,
        *,
        registry: ActorRegistry,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(context)
        self.registry = registry
        self._sleep = sleep

    async def execute(self, task: Task) -> ComposerResult:
        table = self.create_table(task, schema=self.table_schema)
        planner_task = Task(
            board_id=task.board_id,
            title="Create execution plan",
            description=task.description,
            actor_type=ActorType(ActorKind.PLANNER),
            priority=Priority.HIGH,
            metadata={k: task.metadata[k] for k in FORWARDED_METADATA if k in task.metadata},
        )
        self.store.create_task(planner_task)
        self._record_task(table, planner_task)

        planner = self.registry.create(planner_task.actor_type)
        try:
            plan_result = await planner.execute_task(planner_task)
        except Exception as exc:
            self.create_entry(
                table, planner_task, EntryType.TEXT, f"error_{planner_task.id}", str(exc)
            )
            raise CompositionError(
                f"Failed to compose tasks: {exc}", task_id=planner_task.id
            ) from exc
        self.create_entry(table, task, EntryType.RESULT, "plan_result", result_payload(plan_result))

        tasks, report = self.materialize(task, plan_result.plan, table)
        aborted = False
        try:
            outcome = await self.execute_task_sequence(
                tasks, owner=task, completed=[planner_task.id]
            )
        except RootTaskFailedError as exc:
            logger.error(f"Run for {task.id} aborted: {exc}")
            outcome = exc.outcome
            aborted = True

        summary = self.summarize(tasks, outcome, aborted)
        self.create_entry(
            table,
            task,
            EntryType.TEXT,
            "workflow_summary",
            summary,
            {
                "completed": len(outcome.completed),
                "failed": len(outcome.failed),
                "unexecuted": len(outcome.unexecuted),
                "aborted": aborted,
            },
        )
        return ComposerResult(
            summary=f"{summary} {plan_result.summary}",
            plan_summary=plan_result.summary,
            tasks_created=len(tasks) + 1,
            completed=outcome.completed,
            failed=outcome.failed,
            unexecuted=outcome.unexecuted,
            execution_results=outcome.results,
            aborted=aborted,
            repair=report.to_dict(),
        )

    def _record_task(self, table: Table, task: Task) -> None:
        self.create_entry(
            table,
            task,
            EntryType.DATA,
            f"task_{task.id}",
            {
                "taskId": task.id,
                "title": task.title,
                "actorType": str(task.actor_type),
                "priority": task.priority.value,
                "status": task.status.value,
                "dependencies": list(task.dependencies),
            },
        )

    def materialize(
        self, owner: Task, plan: TaskPlan, table: Table | None = None
    ) -> tuple[list[Task], RepairReport]:
        """Create one task per planned task, then write the repaired dependencies onto them."""
        table = table or self.create_table(owner, schema=self.table_schema)
        created: list[Task] = []
        for index, planned in enumerate(plan.tasks):
            metadata: dict[str, Any] = {"plan_index": index, "parent_task_id": owner.id}
            if planned.estimated_completion:
                metadata["estimated_completion"] = planned.estimated_completion
            task = Task(
                board_id=owner.board_id,
                title=planned.title,
                description=planned.description,
                actor_type=planned.actor_type,
                priority=planned.priority,
                metadata=metadata,
            )
            self.store.create_task(task)
            self._record_task(table, task)
            created.append(task)

        graph, report = repair_dependency_graph(
            [
                GraphNode(title=p.title, dependencies=p.dependencies, priority=p.priority)
                for p in plan.tasks
            ]
        )
        for index, task in enumerate(created):
            task.dependencies = [created[dependency].id for dependency in graph[index]]
            self.store.update_task(task)
            self.create_entry(
                table,
                task,
                EntryType.DATA,
                f"dependencies_{task.id}",
                {
                    "taskId": task.id,
                    "declared": list(plan.tasks[index].dependencies),
                    "indices": list(graph[index]),
                    "dependencies": list(task.dependencies),
                },
            )
        self.create_entry(table, owner, EntryType.DATA, "graph_repair", report.to_dict())
        return created, report

    async def execute_task_sequence(
        self,
        tasks: list[Task],
        *,
        owner: Task | None = None,
        completed: Iterable[str] = (),
    ) -> ScheduleOutcome:
        """Run ``tasks`` in dependency order, one at a time.

        Raises ``RootTaskFailedError`` when a task without dependencies fails.
        Other failures only block their dependents, which end up unexecuted.
        """
        table = self.create_table(owner, schema=self.table_schema) if owner else None
        done = set(completed) | {t.id for t in tasks if t.status is TaskStatus.COMPLETED}
        outcome = ScheduleOutcome(failed=[t.id for t in tasks if t.status is TaskStatus.FAILED])
        delay = max(0.0, float(self.context.config.scheduler.task_delay_seconds))
        executed = 0

        progress = True
        while progress:
            progress = False
            for task in tasks:
                if task.id in done or task.id in outcome.failed:
                    continue
                if not all(dependency in done for dependency in task.dependencies):
                    continue
                if executed > 0 and delay:
                    await self._sleep(delay)
                executed += 1
                progress = True
                try:
                    result = await self.run_scheduled_task(task)
                except Exception as exc:
                    message = str(exc) or exc.__class__.__name__
                    outcome.failed.append(task.id)
                    outcome.errors[task.id] = message
                    if table is not None and owner is not None:
                        self.create_entry(
                            table, owner, EntryType.TEXT, f"error_{task.id}", message
                        )
                    if not task.dependencies:
                        outcome.unexecuted = self._unexecuted(tasks, done, outcome)
                        self.context.emit({"event": "run_aborted", "task_id": task.id})
                        raise RootTaskFailedError(
                            f"Critical task failure: {task.title}: {message}",
                            task_id=task.id,
                            outcome=outcome,
                        ) from exc
                    logger.warning(f"Task {task.id} failed; its dependents will not run")
                    continue
                done.add(task.id)
                outcome.completed.append(task.id)
                outcome.results[task.id] = result_payload(result)
                if table is not None and owner is not None:
                    self.create_entry(
                        table,
                        owner,
                        EntryType.DATA,
                        f"result_{task.id}",
                        outcome.results[task.id],
                        {"taskId": task.id, "title": task.title},
                    )

        outcome.unexecuted = self._unexecuted(tasks, done, outcome)
        if outcome.unexecuted:
            logger.warning(f"Tasks left unexecuted: {outcome.unexecuted}")
        return outcome

    @staticmethod
    def _unexecuted(tasks: list[Task], done: set[str], outcome: ScheduleOutcome) -> list[str]:
        return [t.id for t in tasks if t.id not in done and t.id not in outcome.failed]

    async def run_scheduled_task(self, task: Task) -> Any:
        if task.actor_type.kind is ActorKind.CODER:
            return await self.execute_task_with_retry(task)
        actor = self.registry.create(task.actor_type)
        return await actor.execute_task(task)

    async def execute_task_with_retry(self, task: Task) -> CodeResult:
        """Run a coder task, feeding each failure back into the next attempt."""
        max_attempts = max(1, int(self.context.config.scheduler.max_code_attempts))
        table = self.store.create_table(
            task.board_id, "task_executions", "Per-attempt outcomes of code tasks"
        )
        attempt_context: AttemptContext | None = None
        last_result: CodeResult | None = None
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            actor = self.registry.create(task.actor_type, attempt_context=attempt_context)
            description = actor.effective_description(task)
            started = time.monotonic()
            try:
                result = await actor.execute_task(task, retrying=attempt > 1)
            except ActorDisabledError:
                raise
            except Exception as exc:
                last_error = str(exc) or exc.__class__.__name__
                self._record_attempt(
                    table, task, attempt, "exception", last_error, started, description
                )
                if attempt == max_attempts:
                    raise CodeRetryExhaustedError(
                        f"Code task {task.id} failed after {attempt} attempts: {last_error}",
                        task_id=task.id,
                        attempts=attempt,
                        last_error=last_error,
                        last_result=last_result,
                    ) from exc
                previous_code = attempt_context.previous_code if attempt_context else ""
                attempt_context = AttemptContext(attempt, previous_code, last_error)
                continue

            if not result.failed:
                self._record_attempt(table, task, attempt, "success", None, started, description)
                return result

            last_result = result
            execution = result.execution
            last_error = (execution.error if execution else None) or "Execution failed"
            self._record_attempt(table, task, attempt, "failed", last_error, started, description)
            self.context.emit(
                {"event": "code_attempt_failed", "task_id": task.id, "attempt": attempt}
            )
            attempt_context = AttemptContext(attempt, result.code, last_error)

        message = f"Code task {task.id} still failing after {max_attempts} attempts: {last_error}"
        self.transition(task, TaskStatus.FAILED, error=message, retrying=True)
        raise CodeRetryExhaustedError(
            message,
            task_id=task.id,
            attempts=max_attempts,
            last_error=last_error,
            last_result=last_result,
        )

    def _record_attempt(
        self,
        table: Table,
        task: Task,
        attempt: int,
        status: str,
        error: str | None,
        started: float,
        description: str,
    ) -> None:
        self.create_entry(
            table,
            task,
            EntryType.DATA,
            f"attempt_{attempt}",
            {
                "attempt": attempt,
                "status": status,
                "error": error,
                "elapsed_seconds": round(time.monotonic() - started, 3),
                "description": description,
            },
        )

    @staticmethod
    def summarize(tasks: list[Task], outcome: ScheduleOutcome, aborted: bool) -> str:
        summary = (
            f"Completed {len(outcome.completed)} of {len(tasks)} tasks; "
            f"{len(outcome.failed)} failed, {len(outcome.unexecuted)} not executed."
        )
        if aborted:
            summary = f"Run aborted after a root task failure. {summary}"
        return summary
