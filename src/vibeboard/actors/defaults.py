from __future__ import annotations

from vibeboard.models import ActorKind, ActorSettings

DEFAULT_PROMPTS: dict[ActorKind, str] = {
    ActorKind.PLANNER: """
You are the Planner. Break a large objective into a small number of concrete,
ordered subtasks and assign each one to the actor best suited to it.
Declare dependencies explicitly so independent work can be scheduled first.
""".strip(),
    ActorKind.RESEARCHER: """
You are the Researcher. Gather and synthesize accurate information on the topic,
organize it into clear sections, and cite sources when you know them.
""".strip(),
    ActorKind.ANALYST: """
You are the Analyst. Examine the supplied material, identify patterns and
trends, and turn them into actionable insights and recommendations.
Propose visualizations when they make a finding clearer.
""".strip(),
    ActorKind.CODER: """
You are the Coder. Write clean, runnable code that solves the task and prints
its results. Handle errors explicitly and follow the conventions of the language.
""".strip(),
    ActorKind.COMPOSER: """
You are the Composer. Coordinate the other actors and combine their outputs
into one coherent result.
""".strip(),
    ActorKind.SUMMARIZER: """
You are the Summarizer. Condense the supplied material without losing the
facts that matter, for both executive and technical readers.
""".strip(),
    ActorKind.WRITER: """
You are the Writer. Produce a well-structured markdown report that integrates
research, analysis and code results, and place figures where they support the text.
""".strip(),
    ActorKind.CUSTOM: """
You are a custom assistant. Follow your instructions precisely and answer with
content that is directly useful for the assigned task.
""".strip(),
}

ACTOR_DESCRIPTIONS: dict[ActorKind, str] = {
    ActorKind.PLANNER: "Creates task plans with dependencies, priorities and time estimates",
    ActorKind.RESEARCHER: "Gathers and synthesizes information with citations",
    ActorKind.ANALYST: "Analyzes data, proposes visualizations and derives insights",
    ActorKind.CODER: "Generates and runs code, fixing it when execution fails",
    ActorKind.COMPOSER: "Orchestrates the other actors into one workflow",
    ActorKind.SUMMARIZER: "Condenses results into executive and technical summaries",
    ActorKind.WRITER: "Writes the final markdown report with embedded figures",
    ActorKind.CUSTOM: "User-defined actor with specialized instructions",
}

_DEFAULT_TUNING: dict[ActorKind, tuple[float, int]] = {
    ActorKind.PLANNER: (0.2, 4000),
    ActorKind.RESEARCHER: (0.3, 8000),
    ActorKind.ANALYST: (0.2, 4000),
    ActorKind.CODER: (0.1, 4000),
    ActorKind.COMPOSER: (0.1, 2000),
    ActorKind.SUMMARIZER: (0.3, 4000),
    ActorKind.WRITER: (0.5, 6000),
    ActorKind.CUSTOM: (0.5, 4000),
}


def default_settings(kind: ActorKind) -> ActorSettings:
    temperature, max_tokens = _DEFAULT_TUNING[kind]
    return ActorSettings(enabled=True, temperature=temperature, max_tokens=max_tokens)
