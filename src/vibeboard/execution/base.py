from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class ExecutionBackendError(RuntimeError):
    """Raised when no kernel can run the snippet at all."""

    def __init__(
        self,
        message: str,
        *,
        language: str | None = None,
        kernel_missing: bool = False,
    ) -> None:
        super().__init__(message)
        self.language = language
        self.kernel_missing = kernel_missing


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    output: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {"output": self.output, "success": self.success, "error": self.error}


class CodeExecutor(ABC):
    @abstractmethod
    async def execute(self, code: str, language: str) -> ExecutionResult:
        """Run ``code`` against a kernel for ``language``."""

    def supports(self, language: str) -> bool:
        return True
