from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

from vibeboard.execution.base import CodeExecutor, ExecutionBackendError, ExecutionResult

LANGUAGE_ALIASES = {
    "py": "python",
    "python3": "python",
    "js": "javascript",
    "node": "javascript",
    "sh": "bash",
    "shell": "bash",
}


class LocalKernelExecutor(CodeExecutor):
    """Runs snippets by piping them to a local interpreter process."""

    def __init__(
        self,
        *,
        python_binary: str | None = None,
        timeout_seconds: float = 60.0,
        working_directory: Path | None = None,
        event_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.working_directory = working_directory
        self.event_hook = event_hook
        self.kernels: dict[str, list[str]] = {
            "python": [python_binary or sys.executable, "-"],
            "javascript": ["node", "-"],
            "bash": ["bash", "-s"],
        }

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    @staticmethod
    def normalize_language(language: str) -> str:
        normalized = language.strip().lower()
        return LANGUAGE_ALIASES.get(normalized, normalized)

    def supports(self, language: str) -> bool:
        return self.normalize_language(language) in self.kernels

    def command_for(self, language: str) -> list[str]:
        normalized = self.normalize_language(language)
        command = self.kernels.get(normalized)
        if command is None:
            raise ExecutionBackendError(
                f"No kernel available for language: {language}",
                language=language,
                kernel_missing=True,
            )
        return list(command)

    async def execute(self, code: str, language: str) -> ExecutionResult:
        command = self.command_for(language)
        self._emit({"event": "execution_start", "language": language, "command": command[:1]})
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.working_directory) if self.working_directory else None,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExecutionBackendError(
                f"Interpreter not found for {language}: {command[0]}",
                language=language,
                kernel_missing=True,
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(code.encode("utf-8")),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"{language} execution timed out after {self.timeout_seconds}s")
            self._emit({"event": "execution_timeout", "language": language})
            return ExecutionResult(
                output="",
                success=False,
                error=f"Execution timed out after {self.timeout_seconds:g} seconds",
            )

        output = stdout.decode("utf-8", errors="replace")
        error_output = stderr.decode("utf-8", errors="replace").strip()
        exit_code = process.returncode
        self._emit({"event": "execution_exit", "language": language, "exit_code": exit_code})
        if exit_code != 0:
            return ExecutionResult(
                output=output,
                success=False,
                error=error_output or f"Process exited with code {exit_code}",
            )
        return ExecutionResult(output=output, success=True)
