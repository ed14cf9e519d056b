from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from vibeboard.actors.base import Actor, ActorContext, render_dependency_context
from vibeboard.execution.base import ExecutionBackendError
from vibeboard.models import ActorKind, ActorType, EntryType, Task, utcnow

CODE_FENCE_PATTERN = re.compile(r"```([\w+#-]*)[ \t]*\n?(.*?)```", re.DOTALL)
BASE64_IMAGE_PATTERN = re.compile(r'<img src="data:image/\w+;base64,([^"]+)"')

# Ordered: the first matching rule wins.
LANGUAGE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("python", ("python",)),
    ("javascript", ("javascript", "js")),
    ("typescript", ("typescript", "ts")),
    ("r", ("language r", "using r", "in r")),
    ("sql", ("sql",)),
    ("python", ("matplotlib", "pandas", "numpy", "seaborn")),
    ("r", ("ggplot", "dplyr", "tidyverse")),
    ("javascript", ("d3.js", "chart.js", "plotly.js")),
    ("bash", ("bash", "shell script")),
)


@dataclass(frozen=True, slots=True)
class AttemptContext:
    """What a retried coder attempt knows about the attempt before it."""

    attempt: int
    previous_code: str
    error: str

    def render(self, description: str) -> str:
        return (
            f"{description}\n\n"
            "IMPORTANT: Previous code failed with the following error:\n"
            f"{self.error}\n\n"
            "Here is the code that needs to be fixed:\n"
            f"```\n{self.previous_code}\n```\n\n"
            "Please fix the code so that it runs without this error "
            "and still accomplishes the original task."
        )


@dataclass(slots=True)
class CodeExecution:
    output: str
    success: bool
    error: str | None = None
    visualizations: list[str] = field(default_factory=list)
    data: Any = None


@dataclass(slots=True)
class CodeResult:
    code: str
    language: str
    execution: CodeExecution | None = None

    @property
    def failed(self) -> bool:
        return self.execution is not None and not self.execution.success


def determine_language(description: str) -> str:
    lowered = f" {description.lower()} "
    for language, keywords in LANGUAGE_RULES:
        for keyword in keywords:
            if re.search(rf"(?<![\w.]){re.escape(keyword)}(?![\w])", lowered):
                return language
    return "python"


def extract_code(completion: str, default_language: str) -> tuple[str, str]:
    match = CODE_FENCE_PATTERN.search(completion)
    if match:
        return match.group(2).strip(), (match.group(1) or default_language).lower()
    return completion.strip(), default_language


def extract_structured_data(output: str) -> Any:
    decoder = json.JSONDecoder()
    for index, char in enumerate(output):
        if char not in "{[":
            continue
        try:
            payload, _ = decoder.raw_decode(output, index)
        except json.JSONDecodeError:
            continue
        return payload
    return None


class Coder(Actor):
    kind = ActorKind.CODER
    table_name = "code"
    table_description = "Code snippets and execution results"
    table_schema = {"language": "string", "code": "string", "execution": "object"}

    def __init__(
        self,
        context: ActorContext,
        *,
        actor_type: ActorType | None = None,
        attempt_context: AttemptContext | None = None,
    ) -> None:
        super().__init__(context, actor_type=actor_type)
        self.attempt_context = attempt_context

    def effective_description(self, task: Task) -> str:
        if self.attempt_context is None:
            return task.description
        return self.attempt_context.render(task.description)

    @property
    def can_execute(self) -> bool:
        return self.context.executor is not None and self.context.config.execution.enabled

    def build_prompt(self, description: str, language: str, dependency_context: str) -> str:
        parts = [
            self.system_prompt,
            f"Write {language} code for the following task:\n{description}",
        ]
        if dependency_context:
            parts.append(f"Results from earlier tasks:\n{dependency_context}")
        parts.append(
            "Print every result the task asks for. Return only the code, "
            f"in a single ```{language} fenced block."
        )
        return "\n\n".join(parts)

    def build_refine_prompt(self, description: str, result: CodeResult) -> str:
        execution = result.execution or CodeExecution(output="", success=True)
        parts = [
            self.system_prompt,
            f"Refine the following {result.language} code.",
            f"Original task:\n{description}",
            f"Original code:\n```{result.language}\n{result.code}\n```",
            f"Execution output:\n{execution.output or '(no output)'}",
        ]
        if execution.error:
            parts.append(f"Error:\n{execution.error}")
        parts.append(
            "Fix remaining issues, improve robustness and output formatting. "
            f"Return only the improved code in a single ```{result.language} fenced block."
        )
        return "\n\n".join(parts)

    async def generate_code(self, description: str, dependency_context: str = "") -> CodeResult:
        language = determine_language(description)
        completion = await self.generate_completion(
            self.build_prompt(description, language, dependency_context)
        )
        code, language = extract_code(completion, language)
        return CodeResult(code=code, language=language)

    async def refine_code(self, description: str, result: CodeResult) -> CodeResult:
        completion = await self.generate_completion(self.build_refine_prompt(description, result))
        code, language = extract_code(completion, result.language)
        return CodeResult(code=code, language=language)

    async def run_code(self, code: str, language: str) -> CodeExecution:
        executor = self.context.executor
        if executor is None:
            raise ExecutionBackendError(
                "No code execution backend is configured", language=language
            )
        outcome = await executor.execute(code, language)
        output = outcome.output or ""
        return CodeExecution(
            output=output or "No output",
            success=outcome.success,
            error=outcome.error if not outcome.success else None,
            visualizations=BASE64_IMAGE_PATTERN.findall(output),
            data=extract_structured_data(output),
        )

    @staticmethod
    def _code_value(result: CodeResult) -> dict[str, str]:
        return {"language": result.language, "code": result.code}

    async def execute(self, task: Task) -> CodeResult:
        table = self.create_table(task, schema=self.table_schema)
        description = self.effective_description(task)
        dependency_context = render_dependency_context(self.gather_dependency_results(task))

        if not self.can_execute:
            self.create_entry(
                table,
                task,
                EntryType.TEXT,
                "executor_missing",
                "No code execution backend is configured. Code is generated but not executed.",
            )
            result = await self.generate_code(description, dependency_context)
            self.create_entry(
                table, task, EntryType.CODE, "generated_code", self._code_value(result)
            )
            return result

        result = await self.generate_code(description, dependency_context)
        self.create_entry(table, task, EntryType.CODE, "initial_code", self._code_value(result))
        try:
            execution = await self.run_code(result.code, result.language)
            self.create_entry(
                table, task, EntryType.RESULT, "execution_result", _execution_value(execution)
            )
            if execution.success and "iterative" in task.description.lower():
                result.execution = execution
                refined = await self.refine_code(description, result)
                self.create_entry(
                    table, task, EntryType.CODE, "refined_code", self._code_value(refined)
                )
                refined.execution = await self.run_code(refined.code, refined.language)
                self.create_entry(
                    table,
                    task,
                    EntryType.RESULT,
                    "refined_execution_result",
                    _execution_value(refined.execution),
                )
                return refined
        except ExecutionBackendError as exc:
            logger.error(f"Code execution for {task.id} could not start: {exc}")
            self.create_entry(
                table,
                task,
                EntryType.DATA,
                "execution_error",
                {"error": str(exc), "timestamp": utcnow().isoformat()},
            )
            result.execution = CodeExecution(output="", success=False, error=str(exc))
            return result

        result.execution = execution
        return result


def _execution_value(execution: CodeExecution) -> dict[str, Any]:
    return {
        "output": execution.output,
        "success": execution.success,
        "error": execution.error,
        "visualizations": list(execution.visualizations),
        "data": execution.data,
    }
