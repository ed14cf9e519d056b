"""Tolerant extraction of JSON objects from free-form model output.

Plans go through an ordered chain of strategies; the first one yielding an
object with a ``mainGoal`` and a non-empty ``tasks`` list wins, and the chain
ends in a fixed two-task default so parsing never raises.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from loguru import logger

from vibeboard.models import ActorKind, ActorType, PlannedTask, Priority, TaskPlan

JSON_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
MAIN_GOAL_PATTERN = re.compile(r'"?main[\s_]*goal"?\s*[:=]\s*"?([^"\n]+?)"?\s*,?\s*$', re.I | re.M)
QUOTED_TITLE_PATTERN = re.compile(r'"title"\s*:\s*"([^"\n]+)"', re.I)
LINE_TITLE_PATTERN = re.compile(r"^[\s>*#\-\d.)]*title\s*[:=]\s*(.+?)\s*$", re.I | re.M)
SINGLE_QUOTED_PATTERN = re.compile(r"([\[{:,]\s*)'([^'\n]*)'(?=\s*[:,\]}])")
UNQUOTED_KEY_PATTERN = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
TRAILING_COMMA_PATTERN = re.compile(r",\s*([}\]])")
SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

PlanStrategy = Callable[[str, str], dict[str, Any] | None]


def iter_fenced_blocks(text: str) -> Iterator[str]:
    for match in JSON_FENCE_PATTERN.finditer(text):
        block = match.group(1).strip()
        if block:
            yield block


def iter_json_objects(text: str) -> Iterator[dict[str, Any]]:
    """Yield every JSON object that decodes cleanly starting at some ``{``."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char != "{":
            continue
        try:
            payload, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            yield payload


def greedy_object_text(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def repair_json_text(text: str) -> str:
    fixed = text.translate(SMART_QUOTES)
    fixed = SINGLE_QUOTED_PATTERN.sub(lambda m: m.group(1) + json.dumps(m.group(2)), fixed)
    fixed = UNQUOTED_KEY_PATTERN.sub(r'\1"\2":', fixed)
    return TRAILING_COMMA_PATTERN.sub(r"\1", fixed)


def _loads_object(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def extract_json_object(
    text: str,
    accept: Callable[[dict[str, Any]], bool] | None = None,
) -> dict[str, Any] | None:
    """Best-effort JSON object lookup used by actors returning structured results."""
    check = accept or (lambda _payload: True)
    for block in iter_fenced_blocks(text):
        payload = _loads_object(block)
        if payload is not None and check(payload):
            return payload
    for payload in iter_json_objects(text):
        if check(payload):
            return payload
    for candidate in (greedy_object_text(text), greedy_object_text(repair_json_text(text))):
        payload = _loads_object(candidate)
        if payload is not None and check(payload):
            return payload
    return None


def is_plan_candidate(payload: dict[str, Any]) -> bool:
    tasks = payload.get("tasks")
    return bool(payload.get("mainGoal")) and isinstance(tasks, list) and len(tasks) > 0


def _fenced_plan(text: str, goal: str) -> dict[str, Any] | None:
    for block in iter_fenced_blocks(text):
        payload = _loads_object(block)
        if payload is not None and is_plan_candidate(payload):
            return payload
    return None


def _first_plan_object(text: str, goal: str) -> dict[str, Any] | None:
    for payload in iter_json_objects(text):
        if is_plan_candidate(payload):
            return payload
    return None


def _greedy_plan(text: str, goal: str) -> dict[str, Any] | None:
    return _loads_object(greedy_object_text(text))


def _repaired_plan(text: str, goal: str) -> dict[str, Any] | None:
    return _loads_object(greedy_object_text(repair_json_text(text)))


def _manual_plan(text: str, goal: str) -> dict[str, Any] | None:
    titles = QUOTED_TITLE_PATTERN.findall(text) or LINE_TITLE_PATTERN.findall(text)
    if not titles:
        return None
    goal_match = MAIN_GOAL_PATTERN.search(text)
    main_goal = goal_match.group(1).strip() if goal_match else goal
    tasks = [
        {"title": title.strip(), "description": title.strip(), "actorType": "researcher"}
        for title in titles
        if title.strip()
    ]
    return {"mainGoal": main_goal, "tasks": tasks}


PLAN_STRATEGIES: tuple[tuple[str, PlanStrategy], ...] = (
    ("fenced", _fenced_plan),
    ("first_object", _first_plan_object),
    ("greedy", _greedy_plan),
    ("repaired", _repaired_plan),
    ("manual", _manual_plan),
)


def _fallback_kind(allowed: list[ActorKind], preferred: ActorKind) -> ActorKind:
    if preferred in allowed or not allowed:
        return preferred
    if ActorKind.RESEARCHER in allowed:
        return ActorKind.RESEARCHER
    return allowed[0]


def normalize_actor_type(
    raw: Any,
    custom_id: Any,
    allowed: list[ActorKind],
    custom_ids: set[str] | None,
) -> ActorType:
    """Map a raw actor type onto an allowed one, falling back to a researcher."""
    text = str(raw or "").strip()
    if custom_id and text.lower() == "custom":
        text = f"CUSTOM:{custom_id}"
    try:
        actor_type = ActorType.parse(text)
    except ValueError:
        logger.warning(f"Unknown actor type {text!r} in plan, using fallback")
        return ActorType(_fallback_kind(allowed, ActorKind.RESEARCHER))
    if actor_type.kind is ActorKind.CUSTOM:
        known = custom_ids is None or actor_type.custom_id in custom_ids
        if actor_type.custom_id and known:
            return actor_type
        logger.warning(f"Custom actor {text!r} is not available, using fallback")
        return ActorType(_fallback_kind(allowed, ActorKind.RESEARCHER))
    if allowed and actor_type.kind not in allowed:
        logger.warning(f"Actor {actor_type.kind.value} is not allowed here, using fallback")
        return ActorType(_fallback_kind(allowed, ActorKind.RESEARCHER))
    return actor_type


def _normalize_dependencies(raw: Any) -> list[str]:
    if raw is None or raw == "":
        return []
    items: Iterable[Any] = raw if isinstance(raw, list) else [raw]
    return [str(item).strip() for item in items if str(item).strip()]


def normalize_plan(
    payload: dict[str, Any],
    allowed: list[ActorKind],
    custom_ids: set[str] | None = None,
) -> TaskPlan:
    tasks: list[PlannedTask] = []
    for index, raw in enumerate(payload.get("tasks") or []):
        # Keep a placeholder for malformed items so dependency indices stay aligned.
        if not isinstance(raw, dict):
            raw = {"title": raw} if isinstance(raw, str) else {}
        title = str(raw.get("title") or f"Task {index + 1}").strip()
        estimated = raw.get("estimatedCompletion")
        tasks.append(
            PlannedTask(
                title=title,
                description=str(raw.get("description") or title).strip(),
                actor_type=normalize_actor_type(
                    raw.get("actorType") or raw.get("actor_type") or raw.get("actor"),
                    raw.get("customActorId"),
                    allowed,
                    custom_ids,
                ),
                dependencies=_normalize_dependencies(raw.get("dependencies")),
                priority=Priority.parse(raw.get("priority")),
                estimated_completion=str(estimated) if estimated else None,
            )
        )
    return TaskPlan(main_goal=str(payload.get("mainGoal") or "").strip(), tasks=tasks)


def default_plan(goal: str, allowed: list[ActorKind]) -> TaskPlan:
    return TaskPlan(
        main_goal=goal,
        tasks=[
            PlannedTask(
                title="Research the goal",
                description=f"Gather background information for: {goal}",
                actor_type=ActorType(_fallback_kind(allowed, ActorKind.RESEARCHER)),
                priority=Priority.HIGH,
            ),
            PlannedTask(
                title="Analyze the research",
                description=f"Analyze the research findings and derive insights for: {goal}",
                actor_type=ActorType(_fallback_kind(allowed, ActorKind.ANALYST)),
                dependencies=["0"],
            ),
        ],
    )


def parse_plan(
    text: str,
    goal: str,
    allowed: list[ActorKind],
    custom_ids: set[str] | None = None,
) -> tuple[TaskPlan, str]:
    """Return the parsed plan and the name of the strategy that produced it."""
    for name, strategy in PLAN_STRATEGIES:
        try:
            candidate = strategy(text, goal)
            if candidate is None or not is_plan_candidate(candidate):
                continue
            plan = normalize_plan(candidate, allowed, custom_ids)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.debug(f"Plan strategy {name} rejected output: {exc}")
            continue
        if plan.main_goal and plan.tasks:
            return plan, name
    logger.warning("Planner output could not be parsed, using default plan")
    return default_plan(goal, allowed), "default"
