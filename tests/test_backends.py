import asyncio
import sys
from typing import Any

import pytest

from vibeboard.execution import ExecutionBackendError, LocalKernelExecutor
from vibeboard.gateway import GatewayError, GenerationRequest, OpenAIGateway


def test_python_snippet_runs_in_a_subprocess() -> None:
    events: list[dict[str, Any]] = []
    executor = LocalKernelExecutor(python_binary=sys.executable, event_hook=events.append)

    result = asyncio.run(executor.execute("print('hi')", "python"))

    assert result.success is True
    assert result.output == "hi\n"
    assert result.error is None
    assert [event["event"] for event in events] == ["execution_start", "execution_exit"]


def test_nonzero_exit_reports_stderr() -> None:
    executor = LocalKernelExecutor()

    result = asyncio.run(executor.execute("print('partial')\n1 / 0", "py"))

    assert result.success is False
    assert result.output == "partial\n"
    assert "ZeroDivisionError" in result.error


def test_slow_snippet_times_out() -> None:
    executor = LocalKernelExecutor(timeout_seconds=0.5)

    result = asyncio.run(executor.execute("import time\ntime.sleep(5)", "python"))

    assert result.success is False
    assert result.error == "Execution timed out after 0.5 seconds"


def test_unknown_language_has_no_kernel() -> None:
    executor = LocalKernelExecutor()

    assert executor.supports("python3") is True
    assert executor.supports("cobol") is False
    with pytest.raises(ExecutionBackendError) as excinfo:
        asyncio.run(executor.execute("DISPLAY 'HI'.", "cobol"))

    assert excinfo.value.kernel_missing is True
    assert excinfo.value.language == "cobol"


def test_missing_interpreter_is_a_backend_error() -> None:
    executor = LocalKernelExecutor(python_binary="/nonexistent/python")

    with pytest.raises(ExecutionBackendError, match="Interpreter not found"):
        asyncio.run(executor.execute("print(1)", "python"))


def test_language_aliases() -> None:
    assert LocalKernelExecutor.normalize_language(" JS ") == "javascript"
    assert LocalKernelExecutor.normalize_language("shell") == "bash"
    assert LocalKernelExecutor.normalize_language("ruby") == "ruby"


class FakeCompletions:
    def __init__(self, reply: Any) -> None:
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class FakeClient:
    def __init__(self, reply: Any) -> None:
        self.completions = FakeCompletions(reply)
        self.chat = self


def _gateway(reply: Any) -> tuple[OpenAIGateway, list[dict[str, Any]]]:
    created: list[dict[str, Any]] = []
    client = FakeClient(reply)

    def factory(**kwargs: Any) -> FakeClient:
        created.append(kwargs)
        return client

    return OpenAIGateway(client_factory=factory), created


def test_gateway_sends_prompt_and_settings() -> None:
    reply = {"choices": [{"message": {"content": "  Hello there  "}}]}
    gateway, created = _gateway(reply)
    request = GenerationRequest(prompt="Say hello", max_tokens=50, temperature=0.2)

    response = asyncio.run(gateway.generate("openai", "sk-test", request, model_hint="gpt-x"))
    asyncio.run(gateway.generate("openai", "sk-test", request))

    assert response.text == "Hello there"
    assert created == [{"api_key": "sk-test", "base_url": None}]
    client_calls = gateway._clients[("openai", "sk-test")].completions.calls
    assert client_calls[0] == {
        "model": "gpt-x",
        "messages": [{"role": "user", "content": "Say hello"}],
        "max_tokens": 50,
        "temperature": 0.2,
    }
    assert client_calls[1]["model"] == "gpt-4o-mini"


def test_gateway_uses_local_endpoint_for_ollama() -> None:
    gateway, created = _gateway({"choices": [{"message": {"content": "hi"}}]})

    asyncio.run(gateway.generate("ollama", None, GenerationRequest(prompt="p")))

    assert created == [{"api_key": "ollama", "base_url": "http://localhost:11434/v1"}]


def test_gateway_errors() -> None:
    empty, _ = _gateway({"choices": []})
    with pytest.raises(GatewayError, match="empty completion"):
        asyncio.run(empty.generate("openai", "k", GenerationRequest(prompt="p")))

    broken, _ = _gateway(ConnectionError("network down"))
    with pytest.raises(GatewayError, match="network down") as excinfo:
        asyncio.run(broken.generate("openai", "k", GenerationRequest(prompt="p")))
    assert excinfo.value.provider == "openai"
    assert excinfo.value.retriable is True

    with pytest.raises(GatewayError, match="Unsupported provider") as excinfo:
        asyncio.run(broken.generate("palm", "k", GenerationRequest(prompt="p")))
    assert excinfo.value.retriable is False
