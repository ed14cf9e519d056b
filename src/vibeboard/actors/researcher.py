from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from vibeboard.actors.base import Actor, render_dependency_context
from vibeboard.actors.parsing import extract_json_object
from vibeboard.models import ActorKind, EntryType, Task

REPORT_FORMAT = """
Return the report as one JSON object inside a ```json fence:
{
  "title": "report title",
  "content": "full markdown body of the report",
  "summary": "executive summary of the key findings",
  "keyFindings": ["finding with supporting evidence"],
  "sections": [{"title": "section heading", "content": "section body"}],
  "citations": [{"key": "citation key", "text": "how the source is used"}]
}
Use markdown headings inside section content and LaTeX ($...$) for math.
""".strip()


@dataclass(slots=True)
class ResearchResult:
    title: str
    content: str
    summary: str
    key_findings: list[str] = field(default_factory=list)
    sections: list[dict[str, str]] = field(default_factory=list)
    citations: list[dict[str, Any]] = field(default_factory=list)


def _sections(raw: Any) -> list[dict[str, str]]:
    if not isinstance(raw, list):
        return []
    sections = []
    for item in raw:
        if isinstance(item, dict) and (item.get("title") or item.get("content")):
            sections.append(
                {"title": str(item.get("title", "")), "content": str(item.get("content", ""))}
            )
    return sections


class Researcher(Actor):
    kind = ActorKind.RESEARCHER
    table_name = "research"
    table_description = "Research findings and citations"
    table_schema = {
        "query": "string",
        "summary": "string",
        "findings": "array",
        "content": "string",
        "citations": "array",
    }

    def build_prompt(self, task: Task, dependency_results: list[dict[str, Any]]) -> str:
        return "\n\n".join(
            [
                self.system_prompt,
                f"Task:\n{task.description}",
                "Previous results:\n"
                + (render_dependency_context(dependency_results) or "No previous results."),
                REPORT_FORMAT,
            ]
        )

    def parse_report(self, task: Task, text: str) -> ResearchResult:
        payload = extract_json_object(
            text, lambda candidate: "content" in candidate or "sections" in candidate
        )
        if payload is None:
            payload = {"content": text}
        sections = _sections(payload.get("sections"))
        content = str(payload.get("content") or "").strip()
        if not content:
            content = "\n\n".join(f"## {s['title']}\n\n{s['content']}" for s in sections)
        findings = payload.get("keyFindings")
        if not isinstance(findings, list) or not findings:
            findings = [section["title"] for section in sections if section["title"]]
        citations = payload.get("citations")
        return ResearchResult(
            title=str(payload.get("title") or task.title),
            content=content,
            summary=str(payload.get("summary") or f"Research results for: {task.description}"),
            key_findings=[str(item) for item in findings],
            sections=sections,
            citations=citations if isinstance(citations, list) else [],
        )

    async def execute(self, task: Task) -> ResearchResult:
        table = self.create_table(task, schema=self.table_schema)
        dependency_results = self.gather_dependency_results(task)
        response = await self.generate_completion(self.build_prompt(task, dependency_results))
        report = self.parse_report(task, response)
        self.create_entry(
            table,
            task,
            EntryType.RESULT,
            "research_report",
            {
                "title": report.title,
                "content": report.content,
                "summary": report.summary,
                "keyFindings": report.key_findings,
                "sections": report.sections,
                "citations": report.citations,
            },
        )
        return report
