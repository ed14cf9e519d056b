from __future__ import annotations

from collections.abc import Callable
from typing import Any

from vibeboard.actors.analyst import Analyst
from vibeboard.actors.base import Actor, ActorContext
from vibeboard.actors.coder import Coder
from vibeboard.actors.composer import Composer
from vibeboard.actors.custom import CustomActor
from vibeboard.actors.planner import Planner
from vibeboard.actors.researcher import Researcher
from vibeboard.actors.summarizer import Summarizer
from vibeboard.actors.writer import Writer
from vibeboard.models import ActorKind, ActorType

ActorFactory = Callable[..., Actor]


class UnknownActorError(LookupError):
    """Raised when no actor can be built for an actor type."""

    def __init__(self, message: str, *, actor_type: str) -> None:
        super().__init__(message)
        self.actor_type = actor_type


class ActorRegistry:
    """Maps actor kinds to constructors; custom actors are resolved from the store."""

    def __init__(
        self,
        context: ActorContext,
        factories: dict[ActorKind, ActorFactory] | None = None,
    ) -> None:
        self.context = context
        self._factories: dict[ActorKind, ActorFactory] = dict(factories or {})

    def register(self, kind: ActorKind, factory: ActorFactory) -> None:
        if kind is ActorKind.CUSTOM:
            raise ValueError("Custom actors are resolved from the store, not registered")
        self._factories[kind] = factory

    def kinds(self) -> list[ActorKind]:
        return list(self._factories)

    def create(self, actor_type: ActorType | ActorKind | str, **kwargs: Any) -> Actor:
        resolved = ActorType.parse(actor_type)
        if resolved.kind is ActorKind.CUSTOM:
            definition = (
                self.context.store.get_custom_actor(resolved.custom_id)
                if resolved.custom_id
                else None
            )
            if definition is None:
                raise UnknownActorError(
                    f"Custom actor not found: {resolved.custom_id}", actor_type=str(resolved)
                )
            return CustomActor(self.context, definition)
        factory = self._factories.get(resolved.kind)
        if factory is None:
            raise UnknownActorError(
                f"No actor registered for {resolved.kind.value}", actor_type=str(resolved)
            )
        return factory(self.context, **kwargs)


def default_registry(context: ActorContext) -> ActorRegistry:
    registry = ActorRegistry(
        context,
        {
            ActorKind.PLANNER: Planner,
            ActorKind.RESEARCHER: Researcher,
            ActorKind.ANALYST: Analyst,
            ActorKind.CODER: Coder,
            ActorKind.SUMMARIZER: Summarizer,
            ActorKind.WRITER: Writer,
        },
    )
    registry.register(
        ActorKind.COMPOSER,
        lambda actor_context, **kwargs: Composer(actor_context, registry=registry, **kwargs),
    )
    return registry
