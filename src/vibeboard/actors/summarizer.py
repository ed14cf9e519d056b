from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from vibeboard.actors.base import Actor, render_dependency_context
from vibeboard.actors.parsing import extract_json_object
from vibeboard.models import ActorKind, EntryType, Task

SUMMARY_FORMAT = """
Produce four views of the material: a main summary, five to ten key points,
an executive summary for decision makers and a technical summary for experts.
Return them as one JSON object inside a ```json fence:
{
  "summary": "main summary",
  "keyPoints": ["most important takeaway"],
  "executiveSummary": "business-focused summary",
  "technicalSummary": "detailed technical summary"
}
""".strip()


@dataclass(slots=True)
class SummaryResult:
    summary: str
    key_points: list[str] = field(default_factory=list)
    executive_summary: str | None = None
    technical_summary: str | None = None


class Summarizer(Actor):
    kind = ActorKind.SUMMARIZER
    table_name = "summaries"
    table_description = "Summary results and key points"
    table_schema = {
        "summary": "string",
        "keyPoints": "array",
        "executiveSummary": "string",
        "technicalSummary": "string",
    }

    def build_prompt(self, task: Task, dependency_results: list[dict[str, Any]]) -> str:
        return "\n\n".join(
            [
                self.system_prompt,
                f"Task:\n{task.description}",
                "Input data:\n"
                + (render_dependency_context(dependency_results) or "No input data available."),
                SUMMARY_FORMAT,
            ]
        )

    @staticmethod
    def parse_summary(text: str) -> SummaryResult:
        payload = extract_json_object(text, lambda candidate: "summary" in candidate)
        if payload is None:
            return SummaryResult(summary=text.strip())
        key_points = payload.get("keyPoints")
        return SummaryResult(
            summary=str(payload.get("summary") or ""),
            key_points=[str(point) for point in key_points] if isinstance(key_points, list) else [],
            executive_summary=payload.get("executiveSummary") or None,
            technical_summary=payload.get("technicalSummary") or None,
        )

    async def execute(self, task: Task) -> SummaryResult:
        table = self.create_table(task, schema=self.table_schema)
        dependency_results = self.gather_dependency_results(task)
        response = await self.generate_completion(self.build_prompt(task, dependency_results))
        summary = self.parse_summary(response)

        self.create_entry(
            table,
            task,
            EntryType.RESULT,
            "summary_result",
            {
                "summary": summary.summary,
                "keyPoints": summary.key_points,
                "executiveSummary": summary.executive_summary,
                "technicalSummary": summary.technical_summary,
            },
        )
        self.create_entry(table, task, EntryType.DATA, "key_points", summary.key_points)
        if summary.executive_summary:
            self.create_entry(
                table, task, EntryType.TEXT, "executive_summary", summary.executive_summary
            )
        if summary.technical_summary:
            self.create_entry(
                table, task, EntryType.TEXT, "technical_summary", summary.technical_summary
            )
        return summary
