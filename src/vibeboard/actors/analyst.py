from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from vibeboard.actors.base import Actor, render_dependency_context
from vibeboard.actors.parsing import extract_json_object
from vibeboard.models import ActorKind, EntryType, Task

VISUALIZATION_TYPES = {"table", "mermaid", "math", "image"}

ANALYSIS_FORMAT = """
Return the analysis as one JSON object inside a ```json fence:
{
  "summary": "overall summary of the analysis",
  "insights": ["specific insight with supporting evidence"],
  "recommendations": ["actionable recommendation"],
  "visualizations": [
    {"type": "table", "title": "...", "description": "...",
     "data": {"headers": ["col"], "rows": [["value"]]}},
    {"type": "mermaid", "title": "...", "description": "...", "data": "graph TD; A-->B;"},
    {"type": "math", "title": "...", "description": "...", "data": "\\\\frac{a}{b}"}
  ]
}
""".strip()


@dataclass(slots=True)
class AnalysisResult:
    summary: str
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    visualizations: list[dict[str, Any]] = field(default_factory=list)


def _strings(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw if str(item).strip()]


def _visualizations(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    visualizations = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        viz_type = str(item.get("type") or "table").strip().lower()
        visualizations.append(
            {
                **item,
                "type": viz_type if viz_type in VISUALIZATION_TYPES else "table",
                "title": str(item.get("title") or "Visualization"),
            }
        )
    return visualizations


class Analyst(Actor):
    kind = ActorKind.ANALYST
    table_name = "analysis"
    table_description = "Analysis results and visualizations"
    table_schema = {"summary": "string", "insights": "array", "visualizations": "array"}

    def build_prompt(self, task: Task, dependency_results: list[dict[str, Any]]) -> str:
        return "\n\n".join(
            [
                self.system_prompt,
                f"Task:\n{task.description}",
                "Input data:\n"
                + (render_dependency_context(dependency_results) or "No input data available."),
                ANALYSIS_FORMAT,
            ]
        )

    @staticmethod
    def parse_analysis(text: str) -> AnalysisResult:
        payload = extract_json_object(
            text, lambda candidate: "summary" in candidate or "insights" in candidate
        )
        if payload is None:
            return AnalysisResult(summary=text.strip())
        return AnalysisResult(
            summary=str(payload.get("summary") or ""),
            insights=_strings(payload.get("insights")),
            recommendations=_strings(payload.get("recommendations")),
            visualizations=_visualizations(payload.get("visualizations")),
        )

    async def execute(self, task: Task) -> AnalysisResult:
        table = self.create_table(task, schema=self.table_schema)
        dependency_results = self.gather_dependency_results(task)
        response = await self.generate_completion(self.build_prompt(task, dependency_results))
        analysis = self.parse_analysis(response)

        self.create_entry(
            table,
            task,
            EntryType.RESULT,
            "analysis_result",
            {
                "summary": analysis.summary,
                "insights": analysis.insights,
                "recommendations": analysis.recommendations,
                "visualizations": analysis.visualizations,
            },
        )
        self.create_entry(table, task, EntryType.TEXT, "summary", analysis.summary)
        self.create_entry(table, task, EntryType.DATA, "insights", analysis.insights)
        for index, visualization in enumerate(analysis.visualizations):
            self.create_entry(
                table,
                task,
                EntryType.DATA,
                f"visualization_{visualization['type']}_{index}",
                visualization,
            )
        return analysis
