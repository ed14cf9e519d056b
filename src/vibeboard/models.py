from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


class ActorKind(str, Enum):
    PLANNER = "planner"
    RESEARCHER = "researcher"
    ANALYST = "analyst"
    CODER = "coder"
    COMPOSER = "composer"
    SUMMARIZER = "summarizer"
    WRITER = "writer"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class ActorType:
    """Actor kind plus the custom actor id when the kind is ``custom``."""

    kind: ActorKind
    custom_id: str | None = None

    @classmethod
    def parse(cls, raw: str | ActorKind | ActorType) -> ActorType:
        if isinstance(raw, ActorType):
            return raw
        if isinstance(raw, ActorKind):
            return cls(raw)
        text = str(raw).strip()
        prefix, _, custom_id = text.partition(":")
        if prefix.lower() == "custom" and custom_id.strip():
            return cls(ActorKind.CUSTOM, custom_id.strip())
        return cls(ActorKind(text.lower()))

    @property
    def key(self) -> str:
        """Settings key: the kind value, or ``custom:<id>`` for custom actors."""
        if self.kind is ActorKind.CUSTOM and self.custom_id:
            return f"custom:{self.custom_id}"
        return self.kind.value

    def __str__(self) -> str:
        if self.kind is ActorKind.CUSTOM and self.custom_id:
            return f"CUSTOM:{self.custom_id}"
        return self.kind.value


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, raw: Any) -> Priority:
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.MEDIUM

    @property
    def rank(self) -> int:
        return list(Priority).index(self)


class EntryType(str, Enum):
    RESULT = "result"
    DATA = "data"
    TEXT = "text"
    CODE = "code"
    IMAGE = "image"


@dataclass(slots=True)
class Task:
    board_id: str
    title: str
    description: str
    actor_type: ActorType
    id: str = field(default_factory=lambda: new_id("task"))
    dependencies: list[str] = field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "title": self.title,
            "description": self.description,
            "actor_type": str(self.actor_type),
            "dependencies": list(self.dependencies),
            "priority": self.priority.value,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=str(data["id"]),
            board_id=str(data["board_id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            actor_type=ActorType.parse(data.get("actor_type", "researcher")),
            dependencies=[str(item) for item in data.get("dependencies", [])],
            priority=Priority.parse(data.get("priority")),
            status=TaskStatus(data.get("status", "pending")),
            result=data.get("result"),
            error=data.get("error"),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_iso(data.get("created_at")) or utcnow(),
            started_at=_parse_iso(data.get("started_at")),
            completed_at=_parse_iso(data.get("completed_at")),
        )


@dataclass(slots=True)
class PlannedTask:
    title: str
    description: str
    actor_type: ActorType
    dependencies: list[str] = field(default_factory=list)
    priority: Priority = Priority.MEDIUM
    estimated_completion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "actorType": str(self.actor_type),
            "dependencies": list(self.dependencies),
            "priority": self.priority.value,
        }
        if self.actor_type.custom_id:
            payload["customActorId"] = self.actor_type.custom_id
        if self.estimated_completion:
            payload["estimatedCompletion"] = self.estimated_completion
        return payload


@dataclass(slots=True)
class TaskPlan:
    main_goal: str
    tasks: list[PlannedTask]

    def to_dict(self) -> dict[str, Any]:
        return {"mainGoal": self.main_goal, "tasks": [task.to_dict() for task in self.tasks]}


@dataclass(frozen=True, slots=True)
class Table:
    id: str
    board_id: str
    name: str
    description: str = ""
    schema: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "name": self.name,
            "description": self.description,
            "schema": dict(self.schema),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Table:
        return cls(
            id=str(data["id"]),
            board_id=str(data["board_id"]),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            schema=dict(data.get("schema") or {}),
        )


@dataclass(frozen=True, slots=True)
class Entry:
    """Immutable artifact written by a task into a table."""

    id: str
    board_id: str
    table_id: str
    task_id: str
    type: EntryType
    key: str
    value: Any
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "table_id": self.table_id,
            "task_id": self.task_id,
            "type": self.type.value,
            "key": self.key,
            "value": self.value,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entry:
        return cls(
            id=str(data["id"]),
            board_id=str(data["board_id"]),
            table_id=str(data["table_id"]),
            task_id=str(data["task_id"]),
            type=EntryType(data["type"]),
            key=str(data["key"]),
            value=data.get("value"),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_iso(data.get("created_at")) or utcnow(),
        )


@dataclass(slots=True)
class ActorSettings:
    enabled: bool = True
    model_id: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2000
    custom_instructions: str = ""

    def merged(self, overrides: dict[str, Any] | None) -> ActorSettings:
        if not overrides:
            return ActorSettings(**self.to_dict())
        data = self.to_dict()
        for key, value in overrides.items():
            if key in data and value is not None:
                data[key] = value
        return ActorSettings(
            enabled=bool(data["enabled"]),
            model_id=data["model_id"] or None,
            temperature=float(data["temperature"]),
            max_tokens=int(data["max_tokens"]),
            custom_instructions=str(data["custom_instructions"] or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "model_id": self.model_id,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "custom_instructions": self.custom_instructions,
        }


@dataclass(slots=True)
class CustomActorDefinition:
    id: str
    name: str
    description: str = ""
    settings: ActorSettings = field(default_factory=ActorSettings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomActorDefinition:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            description=str(data.get("description", "")),
            settings=ActorSettings().merged(data.get("settings") or {}),
        )
