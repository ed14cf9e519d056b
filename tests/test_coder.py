import asyncio

import pytest

from vibeboard.actors import AttemptContext, Coder
from vibeboard.actors.coder import determine_language, extract_code, extract_structured_data
from vibeboard.execution import ExecutionBackendError, ExecutionResult
from vibeboard.models import EntryType, TaskStatus

CODE_REPLY = "Here you go:\n```python\nprint('hi')\n```"


def _entries(store, task) -> dict:
    return {entry.key: entry for entry in store.get_entries_for_task(task.id)}


def test_language_detection() -> None:
    assert determine_language("Plot revenue with matplotlib") == "python"
    assert determine_language("Write a SQL query for top customers") == "sql"
    assert determine_language("Build a JavaScript widget") == "javascript"
    assert determine_language("Write a bash script to list files") == "bash"
    assert determine_language("Describe the trend") == "python"


def test_code_and_data_extraction() -> None:
    assert extract_code(CODE_REPLY, "python") == ("print('hi')", "python")
    assert extract_code("```\nSELECT 1;\n```", "sql") == ("SELECT 1;", "sql")
    assert extract_code("  x = 1  ", "python") == ("x = 1", "python")
    assert extract_structured_data('total: {"mean": 2.5}\n') == {"mean": 2.5}
    assert extract_structured_data("no data") is None


def test_attempt_context_enriches_the_description() -> None:
    rendered = AttemptContext(1, "print(x)", "NameError: x").render("Compute stats")

    assert rendered.startswith("Compute stats\n\nIMPORTANT: Previous code failed")
    assert "NameError: x" in rendered
    assert "```\nprint(x)\n```" in rendered


def test_generates_without_running_when_no_executor(context, gateway, store, make_task) -> None:
    context.executor = None
    gateway.when("code for the following task", CODE_REPLY)
    task = make_task("coder", description="Print a greeting in python")

    result = asyncio.run(Coder(context).execute_task(task))

    assert result.code == "print('hi')"
    assert result.execution is None
    assert result.failed is False
    entries = _entries(store, task)
    assert entries["executor_missing"].type is EntryType.TEXT
    assert entries["generated_code"].value == {"language": "python", "code": "print('hi')"}


def test_execution_disabled_in_config_skips_the_executor(
    context, config, gateway, executor, make_task
) -> None:
    config.execution.enabled = False
    gateway.when("code for the following task", CODE_REPLY)

    asyncio.run(Coder(context).execute_task(make_task("coder")))

    assert executor.calls == []


def test_runs_code_and_captures_output(context, gateway, executor, store, make_task) -> None:
    gateway.when("code for the following task", CODE_REPLY)
    executor.queue(
        ExecutionResult(
            output='{"rows": 3}\n<img src="data:image/png;base64,QUJD">\n', success=True
        )
    )
    task = make_task("coder", description="Summarize the table")

    result = asyncio.run(Coder(context).execute_task(task))

    assert executor.calls == [("print('hi')", "python")]
    assert result.execution.success is True
    assert result.execution.visualizations == ["QUJD"]
    assert result.execution.data == {"rows": 3}
    entries = _entries(store, task)
    assert set(entries) == {"initial_code", "execution_result"}
    assert entries["execution_result"].type is EntryType.RESULT
    assert store.get_task_from_board("board-1", task.id).result["execution"]["success"] is True


def test_empty_output_is_reported_as_no_output(context, gateway, executor, make_task) -> None:
    gateway.when("code for the following task", CODE_REPLY)
    executor.queue(ExecutionResult(output="", success=True))

    result = asyncio.run(Coder(context).execute_task(make_task("coder")))

    assert result.execution.output == "No output"


def test_failed_execution_completes_the_task_with_a_failed_result(
    context, gateway, executor, make_task
) -> None:
    gateway.when("code for the following task", CODE_REPLY)
    executor.queue(ExecutionResult(output="", success=False, error="ZeroDivisionError"))
    task = make_task("coder")

    result = asyncio.run(Coder(context).execute_task(task))

    assert result.failed is True
    assert result.execution.error == "ZeroDivisionError"
    assert task.status is TaskStatus.COMPLETED


def test_iterative_tasks_get_a_refinement_pass(
    context, gateway, executor, store, make_task
) -> None:
    gateway.when("Refine the following", "```python\nprint('better')\n```")
    gateway.when("code for the following task", CODE_REPLY)
    task = make_task("coder", description="Iterative cleanup of a python report script")

    result = asyncio.run(Coder(context).execute_task(task))

    assert result.code == "print('better')"
    assert [call[0] for call in executor.calls] == ["print('hi')", "print('better')"]
    assert {"refined_code", "refined_execution_result"} <= set(_entries(store, task))
    assert "Execution output:\nok" in gateway.prompts[-1]


def test_missing_kernel_is_recorded(context, gateway, executor, store, make_task) -> None:
    gateway.when("code for the following task", "```cobol\nDISPLAY 'HI'.\n```")
    executor.queue(
        ExecutionBackendError("No kernel available for language: cobol", kernel_missing=True)
    )
    task = make_task("coder")

    result = asyncio.run(Coder(context).execute_task(task))

    assert result.language == "cobol"
    assert result.failed is True
    assert "No kernel available" in result.execution.error
    assert _entries(store, task)["execution_error"].type is EntryType.DATA


def test_attempt_context_reaches_the_prompt(context, gateway, make_task) -> None:
    gateway.when("code for the following task", CODE_REPLY)
    attempt = AttemptContext(1, "print(x)", "NameError: name 'x' is not defined")
    task = make_task("coder", description="Compute stats")

    coder = Coder(context, attempt_context=attempt)
    asyncio.run(coder.execute_task(task))

    assert coder.effective_description(task) == attempt.render("Compute stats")
    assert "NameError: name 'x' is not defined" in gateway.prompts[-1]
    assert task.description == "Compute stats"


def test_run_code_without_an_executor_is_a_backend_error(context) -> None:
    context.executor = None

    with pytest.raises(ExecutionBackendError, match="No code execution backend"):
        asyncio.run(Coder(context).run_code("print(1)", "python"))
