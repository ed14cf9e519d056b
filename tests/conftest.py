from collections import deque
from collections.abc import Callable
from typing import Any

import pytest

from vibeboard.actors import ActorContext
from vibeboard.config import EngineConfig
from vibeboard.execution.base import CodeExecutor, ExecutionResult
from vibeboard.gateway.base import GenerationRequest, GenerationResponse, TextGenerationGateway
from vibeboard.gateway.queue import RateLimitedCallQueue
from vibeboard.models import ActorType, Task
from vibeboard.state import MemoryBoardStore

BOARD_ID = "board-1"


class FakeGateway(TextGenerationGateway):
    """Replies by the first rule whose needle occurs in the prompt, else from a queue."""

    def __init__(self) -> None:
        self.rules: list[tuple[str, Any]] = []
        self.replies: deque[Any] = deque()
        self.prompts: list[str] = []
        self.calls: list[dict[str, Any]] = []

    def when(self, needle: str, reply: Any) -> "FakeGateway":
        self.rules.append((needle, reply))
        return self

    @staticmethod
    def _render(reply: Any, prompt: str) -> str:
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return str(reply)

    async def generate(
        self,
        provider_id: str,
        credential: str | None,
        request: GenerationRequest,
        model_hint: str | None = None,
        safety_hint: str | None = None,
    ) -> GenerationResponse:
        self.prompts.append(request.prompt)
        self.calls.append(
            {
                "provider_id": provider_id,
                "credential": credential,
                "request": request,
                "model_hint": model_hint,
                "safety_hint": safety_hint,
            }
        )
        for needle, reply in self.rules:
            if needle in request.prompt:
                return GenerationResponse(text=self._render(reply, request.prompt))
        if self.replies:
            return GenerationResponse(text=self._render(self.replies.popleft(), request.prompt))
        return GenerationResponse(text="ok")


class FakeExecutor(CodeExecutor):
    def __init__(self) -> None:
        self.results: deque[ExecutionResult | Exception] = deque()
        self.calls: list[tuple[str, str]] = []

    def queue(self, *results: ExecutionResult | Exception) -> "FakeExecutor":
        self.results.extend(results)
        return self

    async def execute(self, code: str, language: str) -> ExecutionResult:
        self.calls.append((code, language))
        if not self.results:
            return ExecutionResult(output="ok\n", success=True)
        result = self.results.popleft()
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def store() -> MemoryBoardStore:
    store = MemoryBoardStore()
    store.create_board("Test board", board_id=BOARD_ID)
    return store


@pytest.fixture
def config() -> EngineConfig:
    config = EngineConfig.default()
    config.rate_limit.min_interval_seconds = 0.0
    config.scheduler.task_delay_seconds = 0.0
    return config


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def events() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def context(
    store: MemoryBoardStore,
    gateway: FakeGateway,
    executor: FakeExecutor,
    config: EngineConfig,
    events: list[dict[str, Any]],
) -> ActorContext:
    return ActorContext(
        store=store,
        gateway=gateway,
        call_queue=RateLimitedCallQueue(0.0),
        config=config,
        executor=executor,
        event_hook=events.append,
    )


@pytest.fixture
def make_task(store: MemoryBoardStore) -> Callable[..., Task]:
    def _make(
        actor_type: str = "researcher",
        title: str = "Task",
        description: str = "Investigate solar adoption",
        **fields: Any,
    ) -> Task:
        task = Task(
            board_id=BOARD_ID,
            title=title,
            description=description,
            actor_type=ActorType.parse(actor_type),
            **fields,
        )
        store.create_task(task)
        return task

    return _make
