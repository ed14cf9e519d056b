from vibeboard.execution.base import CodeExecutor, ExecutionBackendError, ExecutionResult
from vibeboard.execution.local import LocalKernelExecutor

__all__ = ["CodeExecutor", "ExecutionBackendError", "ExecutionResult", "LocalKernelExecutor"]
