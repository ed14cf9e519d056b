from __future__ import annotations

import copy
import json
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from vibeboard.models import (
    CustomActorDefinition,
    Entry,
    EntryType,
    Table,
    Task,
    new_id,
    utcnow,
)


class StoreError(RuntimeError):
    """Raised when a board, table or task lookup or write fails."""


class BoardStore(ABC):
    """Board-scoped tables, entries, tasks and actor settings.

    Subclasses only provide namespace reads and read-modify-write updates;
    every call below is individually atomic with respect to its namespace.
    """

    NAMESPACES = {"boards", "tasks", "tables", "entries", "actors"}

    @abstractmethod
    def get_json(self, namespace: str, default: Any | None = None) -> Any:
        """Return the payload stored under ``namespace``."""

    @abstractmethod
    def update_json(
        self,
        namespace: str,
        updater: Callable[[Any], Any],
        default: Any | None = None,
    ) -> Any:
        """Apply ``updater`` to the namespace payload and persist the result."""

    @staticmethod
    def _validate_namespace(namespace: str) -> None:
        if namespace not in BoardStore.NAMESPACES:
            raise StoreError(f"Unsupported namespace: {namespace}")

    # boards

    def create_board(self, name: str, board_id: str | None = None) -> dict[str, Any]:
        board = {
            "id": board_id or new_id("board"),
            "name": name,
            "created_at": utcnow().isoformat(),
        }

        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            payload.setdefault(board["id"], board)
            return payload

        boards = self.update_json("boards", _updater, default={})
        return dict(boards[board["id"]])

    def get_board(self, board_id: str) -> dict[str, Any] | None:
        board = self.get_json("boards", default={}).get(board_id)
        return dict(board) if board else None

    def list_boards(self) -> list[dict[str, Any]]:
        return [dict(board) for board in self.get_json("boards", default={}).values()]

    def _require_board(self, board_id: str) -> None:
        if self.get_board(board_id) is None:
            raise StoreError(f"Unknown board: {board_id}")

    # tables and entries

    def create_table(
        self,
        board_id: str,
        name: str,
        description: str = "",
        schema: dict[str, str] | None = None,
    ) -> Table:
        """Return the board's table called ``name``, creating it on first use."""
        self._require_board(board_id)
        candidate = Table(
            id=new_id("table"),
            board_id=board_id,
            name=name,
            description=description,
            schema=dict(schema or {}),
        )
        created: dict[str, Any] = {}

        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            for existing in payload.values():
                if existing["board_id"] == board_id and existing["name"] == name:
                    created.update(existing)
                    return payload
            payload[candidate.id] = candidate.to_dict()
            created.update(payload[candidate.id])
            return payload

        self.update_json("tables", _updater, default={})
        return Table.from_dict(created)

    def get_table(self, table_id: str) -> Table | None:
        raw = self.get_json("tables", default={}).get(table_id)
        return Table.from_dict(raw) if raw else None

    def list_tables(self, board_id: str) -> list[Table]:
        tables = self.get_json("tables", default={}).values()
        return [Table.from_dict(raw) for raw in tables if raw["board_id"] == board_id]

    def create_entry(
        self,
        table_id: str,
        task_id: str,
        type: EntryType,
        key: str,
        value: Any,
        metadata: dict[str, Any] | None = None,
    ) -> Entry:
        table = self.get_table(table_id)
        if table is None:
            raise StoreError(f"Unknown table: {table_id}")
        entry = Entry(
            id=new_id("entry"),
            board_id=table.board_id,
            table_id=table_id,
            task_id=task_id,
            type=EntryType(type),
            key=key,
            value=copy.deepcopy(value),
            metadata=dict(metadata or {}),
        )

        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            payload.setdefault("entries", []).append(entry.to_dict())
            return payload

        self.update_json("entries", _updater, default={"entries": []})
        return entry

    def _entries(self) -> list[Entry]:
        payload = self.get_json("entries", default={"entries": []})
        return [Entry.from_dict(raw) for raw in payload.get("entries", [])]

    def get_entries_for_task(self, task_id: str) -> list[Entry]:
        return [entry for entry in self._entries() if entry.task_id == task_id]

    def get_entries_for_table(self, table_id: str) -> list[Entry]:
        return [entry for entry in self._entries() if entry.table_id == table_id]

    def get_entries_for_board(self, board_id: str) -> list[Entry]:
        return [entry for entry in self._entries() if entry.board_id == board_id]

    # tasks

    def create_task(self, task: Task) -> Task:
        self._require_board(task.board_id)

        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            if task.id in payload:
                raise StoreError(f"Task already exists: {task.id}")
            payload[task.id] = task.to_dict()
            return payload

        self.update_json("tasks", _updater, default={})
        return task

    def update_task(self, task: Task) -> Task:
        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            if task.id not in payload:
                raise StoreError(f"Unknown task: {task.id}")
            payload[task.id] = task.to_dict()
            return payload

        self.update_json("tasks", _updater, default={})
        return task

    def get_task_from_board(self, board_id: str, task_id: str) -> Task | None:
        raw = self.get_json("tasks", default={}).get(task_id)
        if not raw or raw.get("board_id") != board_id:
            return None
        return Task.from_dict(raw)

    def list_tasks(self, board_id: str) -> list[Task]:
        tasks = self.get_json("tasks", default={}).values()
        return [Task.from_dict(raw) for raw in tasks if raw.get("board_id") == board_id]

    # actor settings

    def get_actor_settings(self, actor_key: str) -> dict[str, Any] | None:
        settings = self.get_json("actors", default={}).get("settings", {})
        raw = settings.get(actor_key)
        return dict(raw) if isinstance(raw, dict) else None

    def save_actor_settings(self, actor_key: str, settings: dict[str, Any]) -> None:
        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            payload.setdefault("settings", {})[actor_key] = dict(settings)
            return payload

        self.update_json("actors", _updater, default={})

    def get_custom_actor(self, actor_id: str) -> CustomActorDefinition | None:
        raw = self.get_json("actors", default={}).get("custom", {}).get(actor_id)
        return CustomActorDefinition.from_dict(raw) if raw else None

    def list_custom_actors(self) -> list[CustomActorDefinition]:
        custom = self.get_json("actors", default={}).get("custom", {})
        return [CustomActorDefinition.from_dict(raw) for raw in custom.values()]

    def save_custom_actor(self, definition: CustomActorDefinition) -> None:
        def _updater(payload: dict[str, Any]) -> dict[str, Any]:
            payload.setdefault("custom", {})[definition.id] = definition.to_dict()
            return payload

        self.update_json("actors", _updater, default={})


class MemoryBoardStore(BoardStore):
    """Process-local store; payloads are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get_json(self, namespace: str, default: Any | None = None) -> Any:
        self._validate_namespace(namespace)
        default_value = {} if default is None else default
        return copy.deepcopy(self._data.get(namespace, default_value))

    def update_json(
        self,
        namespace: str,
        updater: Callable[[Any], Any],
        default: Any | None = None,
    ) -> Any:
        updated = updater(self.get_json(namespace, default=default))
        self._data[namespace] = copy.deepcopy(updated)
        return updated


class JsonBoardStore(BoardStore):
    """File-backed store: one revisioned JSON envelope per namespace."""

    SCHEMA_VERSION = 1

    def __init__(self, root: Path, *, lock_timeout_seconds: float = 3.0) -> None:
        self.root = root.resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.lock_file = self.root / ".lock"
        self.lock_timeout_seconds = lock_timeout_seconds

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).replace(microsecond=0).isoformat()

    def _file(self, namespace: str) -> Path:
        return self.root / f"{namespace}.json"

    @contextmanager
    def _state_lock(self):
        start = time.monotonic()
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > self.lock_timeout_seconds:
                    raise StoreError("Timed out waiting for store lock.") from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass

    def get_envelope(self, namespace: str, default: Any | None = None) -> dict[str, Any]:
        self._validate_namespace(namespace)
        default_value = {} if default is None else default
        path = self._file(namespace)
        raw: Any = None
        if path.exists():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning(f"Discarding unreadable store file {path}")
                raw = None
        if isinstance(raw, dict) and {"schema_version", "revision", "data"} <= raw.keys():
            return {
                "schema_version": int(raw.get("schema_version") or self.SCHEMA_VERSION),
                "revision": int(raw.get("revision") or 1),
                "updated_at": raw.get("updated_at") or self._utcnow_iso(),
                "data": raw.get("data", default_value),
            }
        return {
            "schema_version": self.SCHEMA_VERSION,
            "revision": 0,
            "updated_at": self._utcnow_iso(),
            "data": default_value,
        }

    def get_json(self, namespace: str, default: Any | None = None) -> Any:
        return self.get_envelope(namespace, default=default).get("data")

    def update_json(
        self,
        namespace: str,
        updater: Callable[[Any], Any],
        default: Any | None = None,
    ) -> Any:
        self._validate_namespace(namespace)
        with self._state_lock():
            current = self.get_envelope(namespace, default=default)
            updated = updater(current["data"])
            envelope = {
                "schema_version": self.SCHEMA_VERSION,
                "revision": int(current["revision"]) + 1,
                "updated_at": self._utcnow_iso(),
                "data": updated,
            }
            serialized = json.dumps(
                envelope, ensure_ascii=False, separators=(",", ":"), default=str
            )
            self._file(namespace).write_text(serialized, encoding="utf-8")
        return updated
