from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from vibeboard.actors.base import Actor, ActorContext, render_dependency_context
from vibeboard.actors.defaults import default_settings
from vibeboard.models import (
    ActorKind,
    ActorSettings,
    ActorType,
    CustomActorDefinition,
    EntryType,
    Task,
)

INSTRUCTION_PLACEHOLDERS = ("{task}", "{taskDescription}", "{description}")


@dataclass(slots=True)
class CustomResult:
    content: str
    actor_name: str


def resolve_custom_settings(
    context: ActorContext, definition: CustomActorDefinition
) -> ActorSettings:
    """Defaults, then the definition, then config overrides, then persisted settings."""
    key = ActorType(ActorKind.CUSTOM, definition.id).key
    settings = default_settings(ActorKind.CUSTOM).merged(definition.settings.to_dict())
    settings = settings.merged(context.config.actor_overrides(key))
    return settings.merged(context.store.get_actor_settings(key))


class CustomActor(Actor):
    """Actor whose behavior comes from a user-defined definition in the store."""

    kind = ActorKind.CUSTOM
    table_name = "custom_results"
    table_description = "Results produced by custom actors"

    def __init__(self, context: ActorContext, definition: CustomActorDefinition) -> None:
        self.definition = definition
        super().__init__(context, actor_type=ActorType(ActorKind.CUSTOM, definition.id))
        self.settings = resolve_custom_settings(context, definition)

    def reload_settings(self) -> ActorSettings:
        latest = self.store.get_custom_actor(self.definition.id)
        if latest is not None:
            self.definition = latest
            logger.debug(f"Reloaded custom actor {latest.id} ({latest.name})")
        self.settings = resolve_custom_settings(self.context, self.definition)
        logger.debug(f"Loaded settings for {self.actor_key}: enabled={self.settings.enabled}")
        return self.settings

    def build_prompt(self, task: Task, dependency_context: str) -> str:
        instructions = self.settings.custom_instructions.strip()
        if instructions:
            prompt = instructions
            for placeholder in INSTRUCTION_PLACEHOLDERS:
                prompt = prompt.replace(placeholder, task.description)
            if prompt == instructions:
                prompt = f"{instructions}\n\nTask:\n{task.description}"
        else:
            prompt = (
                f'You are a custom assistant named "{self.definition.name}" '
                f"with the following purpose:\n{self.definition.description}\n\n"
                f"Task:\n{task.description}\n\n"
                "Respond with the result of your work on this task."
            )
        if dependency_context:
            prompt = f"{prompt}\n\nResults from earlier tasks:\n{dependency_context}"
        return prompt

    async def execute(self, task: Task) -> CustomResult:
        dependency_context = render_dependency_context(self.gather_dependency_results(task))
        response = await self.generate_completion(self.build_prompt(task, dependency_context))
        result = CustomResult(content=response, actor_name=self.definition.name)
        table = self.create_table(task)
        self.create_entry(
            table,
            task,
            EntryType.RESULT,
            "custom_result",
            {"content": result.content, "actorName": result.actor_name},
            {"custom_actor_id": self.definition.id},
        )
        return result

    def update_instructions(self, instructions: str) -> ActorSettings:
        latest = self.store.get_custom_actor(self.definition.id) or self.definition
        latest.settings = latest.settings.merged({"custom_instructions": instructions})
        self.store.save_custom_actor(latest)
        self.definition = latest
        self.settings = self.settings.merged({"custom_instructions": instructions})
        return self.settings
