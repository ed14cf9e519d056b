from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from vibeboard.actors.base import Actor
from vibeboard.actors.custom import resolve_custom_settings
from vibeboard.actors.defaults import ACTOR_DESCRIPTIONS, default_settings
from vibeboard.actors.parsing import parse_plan
from vibeboard.models import ActorKind, CustomActorDefinition, EntryType, Task, TaskPlan

PLANNABLE_KINDS = (
    ActorKind.RESEARCHER,
    ActorKind.ANALYST,
    ActorKind.CODER,
    ActorKind.SUMMARIZER,
    ActorKind.WRITER,
)

PLAN_FORMAT = """
Respond with a single JSON object and nothing else, shaped like:
{
  "mainGoal": "one sentence describing the overall objective",
  "tasks": [
    {
      "title": "short task name",
      "description": "what must be done",
      "actorType": "one of the actor types listed above",
      "dependencies": [0],
      "priority": "high | medium | low",
      "estimatedCompletion": "short | medium | long"
    }
  ]
}
Dependencies are zero-based indices into the tasks array. A task may only
depend on tasks that must finish before it starts, and never on itself.
""".strip()


@dataclass(slots=True)
class PlannerResult:
    plan: TaskPlan
    summary: str
    strategy: str

    def to_dict(self) -> dict[str, object]:
        return {"plan": self.plan.to_dict(), "summary": self.summary, "strategy": self.strategy}


class Planner(Actor):
    kind = ActorKind.PLANNER
    table_name = "plans"
    table_description = "Task plans produced for board goals"

    def _restriction(self, task: Task) -> set[str] | None:
        raw = task.metadata.get("allowed_actors")
        if not raw:
            return None
        if isinstance(raw, str):
            raw = raw.split(",")
        return {str(item).strip().lower() for item in raw if str(item).strip()}

    def available_kinds(self, task: Task) -> list[ActorKind]:
        restriction = self._restriction(task)
        kinds: list[ActorKind] = []
        for kind in PLANNABLE_KINDS:
            if restriction is not None and kind.value not in restriction:
                continue
            settings = default_settings(kind).merged(
                self.context.config.actor_overrides(kind.value)
            )
            settings = settings.merged(self.store.get_actor_settings(kind.value))
            if settings.enabled:
                kinds.append(kind)
        return kinds

    def available_custom_actors(self, task: Task) -> list[CustomActorDefinition]:
        restriction = self._restriction(task)
        actors = []
        for definition in self.store.list_custom_actors():
            if not resolve_custom_settings(self.context, definition).enabled:
                continue
            if restriction is not None and not (
                "custom" in restriction or f"custom:{definition.id}".lower() in restriction
            ):
                continue
            actors.append(definition)
        return actors

    def build_prompt(
        self,
        task: Task,
        kinds: list[ActorKind],
        custom_actors: list[CustomActorDefinition],
    ) -> str:
        if task.metadata.get("use_custom_instructions") and self.settings.custom_instructions:
            return self.settings.custom_instructions.replace("{task}", task.description)

        actor_lines = [f"- {kind.value}: {ACTOR_DESCRIPTIONS[kind]}" for kind in kinds]
        actor_lines.extend(
            f"- CUSTOM:{definition.id}: {definition.name}"
            + (f" ({definition.description})" if definition.description else "")
            for definition in custom_actors
        )
        return "\n\n".join(
            [
                self.system_prompt,
                f"Goal:\n{task.description}",
                "Available actor types:\n" + "\n".join(actor_lines),
                PLAN_FORMAT,
            ]
        )

    @staticmethod
    def summarize(plan: TaskPlan) -> str:
        counts = Counter(str(planned.actor_type) for planned in plan.tasks)
        breakdown = ", ".join(f"{count} {name}" for name, count in sorted(counts.items()))
        return f"Plan for '{plan.main_goal}': {len(plan.tasks)} tasks ({breakdown})"

    async def execute(self, task: Task) -> PlannerResult:
        kinds = self.available_kinds(task)
        custom_actors = self.available_custom_actors(task)
        response = await self.generate_completion(self.build_prompt(task, kinds, custom_actors))
        plan, strategy = parse_plan(
            response,
            task.description,
            kinds,
            {definition.id for definition in custom_actors},
        )
        summary = self.summarize(plan)

        table = self.create_table(task)
        self.create_entry(
            table, task, EntryType.DATA, "plan", plan.to_dict(), {"strategy": strategy}
        )
        self.create_entry(table, task, EntryType.TEXT, "summary", summary)
        return PlannerResult(plan=plan, summary=summary, strategy=strategy)
