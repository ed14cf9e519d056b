from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from vibeboard.actors.base import Actor
from vibeboard.models import ActorKind, EntryType, Task, TaskStatus

IMAGE_PLACEHOLDER = re.compile(r"\{\{image:(.*?):(.*?)\}\}")
SUBFIGURE_PLACEHOLDER = re.compile(r"\{\{subfigures:([\s\S]*?):([^\n]*?)\}\}")

SECTION_TITLES: tuple[tuple[ActorKind, str], ...] = (
    (ActorKind.RESEARCHER, "Research Findings"),
    (ActorKind.ANALYST, "Analysis"),
    (ActorKind.CODER, "Implementation Details"),
    (ActorKind.SUMMARIZER, "Summaries"),
    (ActorKind.CUSTOM, "Additional Contributions"),
)

WRITER_INSTRUCTIONS = """
Write a complete markdown report with an introduction, a structured body and a conclusion.
Reference an image with {{image:ID:caption}} using an ID from the image list.
Group related images as subfigures:
{{subfigures:
ID1:caption one
ID2:caption two
:main caption}}
""".strip()


@dataclass(frozen=True, slots=True)
class ImageResource:
    id: str
    task_id: str
    task_title: str
    data: str
    caption: str
    description: str = ""
    source: str = "visualization"

    @property
    def src(self) -> str:
        if self.data.startswith(("data:", "http://", "https://", "/")):
            return self.data
        return f"data:image/png;base64,{self.data}"


@dataclass(slots=True)
class WriterResult:
    content: str
    format: str = "markdown"
    images: list[str] = field(default_factory=list)


def result_text(result: Any) -> str:
    if not result:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        content = result.get("content")
        if content:
            return content if isinstance(content, str) else json.dumps(content, default=str)
        if isinstance(result.get("summary"), str) and result["summary"]:
            return result["summary"]
        if isinstance(result.get("code"), str):
            return f"```{result.get('language', '')}\n{result['code']}\n```"
    return json.dumps(result, ensure_ascii=False, indent=2, default=str)


class Writer(Actor):
    kind = ActorKind.WRITER
    table_name = "reports"
    table_description = "Final written reports"

    def completed_tasks(self, task: Task) -> list[Task]:
        return [
            other
            for other in self.store.list_tasks(task.board_id)
            if other.status is TaskStatus.COMPLETED and other.id != task.id
        ]

    def collect_images(self, tasks: list[Task]) -> list[ImageResource]:
        images: list[ImageResource] = []
        for source in tasks:
            result = source.result if isinstance(source.result, dict) else {}
            if source.actor_type.kind is ActorKind.ANALYST:
                for index, viz in enumerate(result.get("visualizations") or []):
                    if isinstance(viz, dict) and viz.get("imageData"):
                        images.append(
                            ImageResource(
                                id=f"{source.id}_viz_{index}",
                                task_id=source.id,
                                task_title=source.title,
                                data=str(viz["imageData"]),
                                caption=str(
                                    viz.get("caption") or f'Visualization from "{source.title}"'
                                ),
                                description=str(viz.get("description") or ""),
                            )
                        )
            if source.actor_type.kind is ActorKind.CODER:
                execution = result.get("execution") or {}
                for index, data in enumerate(execution.get("visualizations") or []):
                    images.append(
                        ImageResource(
                            id=f"{source.id}_plot_{index}",
                            task_id=source.id,
                            task_title=source.title,
                            data=str(data),
                            caption=f'Output of "{source.title}"',
                        )
                    )
            for entry in self.entries_for_task(source.id):
                if entry.type is not EntryType.IMAGE:
                    continue
                images.append(
                    ImageResource(
                        id=entry.id,
                        task_id=source.id,
                        task_title=source.title,
                        data=str(entry.value),
                        caption=str(
                            entry.metadata.get("caption") or f'Image from "{source.title}"'
                        ),
                        description=str(entry.metadata.get("description") or ""),
                        source="entry",
                    )
                )
        return images

    @staticmethod
    def content_by_section(tasks: list[Task]) -> dict[str, str]:
        sections: dict[str, str] = {}
        for kind, title in SECTION_TITLES:
            matching = [t for t in tasks if t.actor_type.kind is kind]
            if matching:
                sections[title] = "\n\n".join(
                    f"### {t.title}\n{result_text(t.result)}" for t in matching
                )
        return sections

    def build_prompt(
        self, task: Task, sections: dict[str, str], images: list[ImageResource]
    ) -> str:
        available = "\n\n".join(
            f"--- {name} ---\n{content or 'No content available'}"
            for name, content in sections.items()
        )
        image_lines = "\n".join(
            f'{index}. "{image.caption}" (ID: {image.id}) - from task: {image.task_title}'
            for index, image in enumerate(images, start=1)
        )
        return "\n\n".join(
            [
                self.system_prompt,
                f"Task:\n{task.description}",
                f"Available information:\n{available or 'No completed work yet.'}",
                f"Available images ({len(images)}):\n{image_lines or 'No images available'}",
                WRITER_INSTRUCTIONS,
            ]
        )

    @staticmethod
    def expand_placeholders(report: str, images: list[ImageResource]) -> str:
        by_id = {image.id: image for image in images}

        def _figure(image_id: str, caption: str) -> str:
            image = by_id.get(image_id.strip())
            if image is None:
                logger.warning(f"Report references unknown image {image_id.strip()}")
                return f"[Image Not Found: {image_id.strip()}]"
            return f"![{caption.strip() or image.caption}]({image.src})"

        def _subfigures(match: re.Match[str]) -> str:
            figures = []
            for line in match.group(1).strip().splitlines():
                if not line.strip():
                    continue
                image_id, _, caption = line.strip().partition(":")
                figures.append(f"  <figure>\n    {_figure(image_id, caption)}\n  </figure>")
            return (
                '<div class="subfigures">\n'
                + "\n".join(figures)
                + f'\n</div>\n<p class="subfigure-caption"><em>{match.group(2).strip()}</em></p>'
            )

        expanded = SUBFIGURE_PLACEHOLDER.sub(_subfigures, report)
        return IMAGE_PLACEHOLDER.sub(lambda m: _figure(m.group(1), m.group(2)), expanded)

    async def execute(self, task: Task) -> WriterResult:
        if self.store.get_board(task.board_id) is None:
            raise ValueError(f"Board {task.board_id} not found")
        completed = self.completed_tasks(task)
        images = self.collect_images(completed)
        logger.info(f"Writer found {len(images)} images for {task.id}")

        response = await self.generate_completion(
            self.build_prompt(task, self.content_by_section(completed), images)
        )
        report = WriterResult(
            content=self.expand_placeholders(response, images),
            images=[image.id for image in images],
        )
        table = self.create_table(task)
        self.create_entry(
            table,
            task,
            EntryType.RESULT,
            "report",
            {"content": report.content, "format": report.format},
            {"images": report.images},
        )
        return report
