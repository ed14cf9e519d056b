from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

ProviderName = Literal["openai", "ollama"]
LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"]


@dataclass(slots=True)
class ProviderConfig:
    provider_id: ProviderName = "openai"
    model: str = ""
    safety_threshold: str = ""
    api_key_env: str = "OPENAI_API_KEY"
    base_url: str = ""

    def credential(self) -> str | None:
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env) or None


@dataclass(slots=True)
class RateLimitConfig:
    min_interval_seconds: float = 1.0


@dataclass(slots=True)
class SchedulerConfig:
    task_delay_seconds: float = 2.0
    max_code_attempts: int = 3


@dataclass(slots=True)
class ExecutionConfig:
    enabled: bool = True
    timeout_seconds: float = 60.0
    python_binary: str = ""


@dataclass(slots=True)
class StoreConfig:
    path: str = ".vibeboard/store"


@dataclass(slots=True)
class LoggingConfig:
    level: LogLevel = "INFO"
    file: str = ""


@dataclass(slots=True)
class EngineConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    # Per-actor overrides keyed by actor kind or ``custom:<id>``.
    actors: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def default(cls) -> EngineConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> EngineConfig:
        return cls(
            provider=ProviderConfig(**data.get("provider", {})),
            rate_limit=RateLimitConfig(**data.get("rate_limit", {})),
            scheduler=SchedulerConfig(**data.get("scheduler", {})),
            execution=ExecutionConfig(**data.get("execution", {})),
            store=StoreConfig(**data.get("store", {})),
            logging=LoggingConfig(**data.get("logging", {})),
            actors={str(key): dict(value) for key, value in data.get("actors", {}).items()},
        )

    def to_dict(self) -> dict:
        return {
            "provider": {
                "provider_id": self.provider.provider_id,
                "model": self.provider.model,
                "safety_threshold": self.provider.safety_threshold,
                "api_key_env": self.provider.api_key_env,
                "base_url": self.provider.base_url,
            },
            "rate_limit": {
                "min_interval_seconds": self.rate_limit.min_interval_seconds,
            },
            "scheduler": {
                "task_delay_seconds": self.scheduler.task_delay_seconds,
                "max_code_attempts": self.scheduler.max_code_attempts,
            },
            "execution": {
                "enabled": self.execution.enabled,
                "timeout_seconds": self.execution.timeout_seconds,
                "python_binary": self.execution.python_binary,
            },
            "store": {
                "path": self.store.path,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
            },
            "actors": {key: dict(value) for key, value in self.actors.items()},
        }

    def actor_overrides(self, actor_key: str) -> dict[str, Any]:
        return dict(self.actors.get(actor_key, {}))


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: EngineConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = ["provider", "rate_limit", "scheduler", "execution", "store", "logging"]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    for actor_key, overrides in sorted(data["actors"].items()):
        lines.append(f"[actors.{json.dumps(actor_key)}]")
        for key, value in overrides.items():
            if value is None:
                continue
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> EngineConfig:
    if not path.exists():
        return EngineConfig.default()
    return EngineConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: EngineConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")
