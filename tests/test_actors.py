import asyncio
import json

import pytest

from vibeboard.actors import (
    ActorDisabledError,
    Analyst,
    CustomActor,
    Researcher,
    Summarizer,
    TaskTransitionError,
    UnknownActorError,
    Writer,
    default_registry,
)
from vibeboard.actors.writer import ImageResource
from vibeboard.gateway import GatewayError
from vibeboard.models import (
    ActorKind,
    ActorType,
    CustomActorDefinition,
    EntryType,
    Task,
    TaskStatus,
)


def _fenced(payload: dict) -> str:
    return f"```json\n{json.dumps(payload)}\n```"


def _entries(store, task) -> dict:
    return {entry.key: entry for entry in store.get_entries_for_task(task.id)}


def test_successful_task_is_completed_with_its_result(
    context, gateway, store, events, make_task
) -> None:
    gateway.when("Return the report", _fenced({"title": "Solar", "content": "Body"}))
    task = make_task()

    result = asyncio.run(Researcher(context).execute_task(task))

    saved = store.get_task_from_board("board-1", task.id)
    assert saved.status is TaskStatus.COMPLETED
    assert saved.started_at is not None and saved.completed_at is not None
    assert saved.result["content"] == result.content == "Body"
    assert [event["event"] for event in events] == ["task_started", "task_completed"]


def test_failed_task_is_recorded_and_reraised(context, gateway, store, events, make_task) -> None:
    gateway.when("Return the report", GatewayError("provider down", provider="openai"))
    task = make_task()

    with pytest.raises(GatewayError, match="provider down"):
        asyncio.run(Researcher(context).execute_task(task))

    saved = store.get_task_from_board("board-1", task.id)
    assert saved.status is TaskStatus.FAILED
    assert saved.error == "provider down"
    assert events[-1]["event"] == "task_failed"
    assert events[-1]["error"] == "provider down"


def test_disabled_actor_refuses_before_touching_the_task(
    context, config, gateway, store, make_task
) -> None:
    config.actors["researcher"] = {"enabled": False}
    task = make_task()

    with pytest.raises(ActorDisabledError) as excinfo:
        asyncio.run(Researcher(context).execute_task(task))

    assert excinfo.value.actor_key == "researcher"
    assert store.get_task_from_board("board-1", task.id).status is TaskStatus.PENDING
    assert gateway.prompts == []


def test_settings_disabled_in_store_apply_on_reload(context, gateway, store, make_task) -> None:
    researcher = Researcher(context)
    store.save_actor_settings("researcher", {"enabled": False})
    task = make_task()

    with pytest.raises(ActorDisabledError):
        asyncio.run(researcher.execute_task(task))

    assert task.status is TaskStatus.PENDING
    assert gateway.prompts == []


def test_completed_task_cannot_run_again(context, make_task) -> None:
    task = make_task()
    researcher = Researcher(context)
    asyncio.run(researcher.execute_task(task))

    with pytest.raises(TaskTransitionError) as excinfo:
        asyncio.run(researcher.execute_task(task))

    assert excinfo.value.current is TaskStatus.COMPLETED
    assert excinfo.value.target is TaskStatus.IN_PROGRESS


def test_settings_layer_defaults_config_then_store(
    context, config, gateway, store, make_task
) -> None:
    config.provider.model = "gpt-test"
    config.provider.safety_threshold = "strict"
    config.actors["analyst"] = {"temperature": 0.9}
    store.save_actor_settings("analyst", {"max_tokens": 123})

    asyncio.run(Analyst(context).execute_task(make_task("analyst")))

    call = gateway.calls[-1]
    assert call["request"].temperature == 0.9
    assert call["request"].max_tokens == 123
    assert call["model_hint"] == "gpt-test"
    assert call["safety_hint"] == "strict"
    assert call["provider_id"] == "openai"

    store.save_actor_settings("analyst", {"model_id": "special-model"})
    asyncio.run(Analyst(context).execute_task(make_task("analyst")))
    assert gateway.calls[-1]["model_hint"] == "special-model"


def test_update_instructions_persists_and_changes_system_prompt(context, store) -> None:
    analyst = Analyst(context)
    analyst.update_instructions("Be terse.")

    assert store.get_actor_settings("analyst")["custom_instructions"] == "Be terse."
    fresh = Analyst(context)
    fresh.reload_settings()
    assert fresh.system_prompt == "Be terse."


def test_dependency_results_prefer_result_entries(context, gateway, store, make_task) -> None:
    gateway.when("Return the report", _fenced({"title": "T", "content": "Findings"}))
    research = make_task(title="Research")
    asyncio.run(Researcher(context).execute_task(research))
    analysis = make_task("analyst", title="Analysis", dependencies=[research.id, "task-gone"])

    gathered = Analyst(context).gather_dependency_results(analysis)

    assert len(gathered) == 1
    assert gathered[0]["task_id"] == research.id
    assert gathered[0]["actor_type"] == "researcher"
    assert gathered[0]["result"]["content"] == "Findings"

    asyncio.run(Analyst(context).execute_task(analysis))
    assert "Findings" in gateway.prompts[-1]


def test_researcher_derives_missing_fields(context, gateway, store, make_task) -> None:
    gateway.when(
        "Return the report",
        _fenced({"sections": [{"title": "Costs", "content": "Falling"}, {"title": "Policy"}]}),
    )
    task = make_task(description="solar costs")

    report = asyncio.run(Researcher(context).execute_task(task))

    assert report.summary == "Research results for: solar costs"
    assert report.key_findings == ["Costs", "Policy"]
    assert report.content.startswith("## Costs\n\nFalling")
    assert report.title == task.title
    entry = _entries(store, task)["research_report"]
    assert entry.type is EntryType.RESULT
    assert entry.value["keyFindings"] == ["Costs", "Policy"]


def test_researcher_keeps_plain_text_as_content(context, gateway, make_task) -> None:
    gateway.when("Return the report", "Just prose about panels.")

    report = asyncio.run(Researcher(context).execute_task(make_task()))

    assert report.content == "Just prose about panels."


def test_analyst_normalizes_visualizations(context, gateway, store, make_task) -> None:
    gateway.when(
        "Return the analysis",
        _fenced(
            {
                "summary": "Growth is steady",
                "insights": ["Up 10%"],
                "recommendations": ["Invest"],
                "visualizations": [
                    {"type": "chart", "data": {"headers": ["a"], "rows": [[1]]}},
                    {"type": "Mermaid", "title": "Flow", "data": "graph TD; A-->B;"},
                    "not a visualization",
                ],
            }
        ),
    )
    task = make_task("analyst")

    analysis = asyncio.run(Analyst(context).execute_task(task))

    assert [viz["type"] for viz in analysis.visualizations] == ["table", "mermaid"]
    assert analysis.visualizations[0]["title"] == "Visualization"
    entries = _entries(store, task)
    assert set(entries) == {
        "analysis_result",
        "summary",
        "insights",
        "visualization_table_0",
        "visualization_mermaid_1",
    }
    assert entries["summary"].value == "Growth is steady"


def test_analyst_uses_unparseable_text_as_summary(context, gateway, make_task) -> None:
    gateway.when("Return the analysis", "Numbers look fine.")

    analysis = asyncio.run(Analyst(context).execute_task(make_task("analyst")))

    assert analysis.summary == "Numbers look fine."
    assert analysis.insights == []


def test_summarizer_writes_optional_views_only_when_present(
    context, gateway, store, make_task
) -> None:
    gateway.when(
        "Produce four views",
        _fenced({"summary": "Short", "keyPoints": ["a", "b"], "executiveSummary": "Exec"}),
    )
    task = make_task("summarizer")

    summary = asyncio.run(Summarizer(context).execute_task(task))

    assert summary.key_points == ["a", "b"]
    assert summary.technical_summary is None
    assert set(_entries(store, task)) == {"summary_result", "key_points", "executive_summary"}


def test_writer_requires_an_existing_board(context) -> None:
    task = Task(
        board_id="missing",
        title="Report",
        description="Write it",
        actor_type=ActorType(ActorKind.WRITER),
    )

    with pytest.raises(ValueError, match="Board missing not found"):
        asyncio.run(Writer(context).execute(task))


def test_writer_embeds_images_from_completed_work(context, gateway, store, make_task) -> None:
    make_task(
        "analyst",
        title="Sales analysis",
        id="task-analysis",
        status=TaskStatus.COMPLETED,
        result={
            "summary": "Sales grew",
            "visualizations": [{"type": "image", "imageData": "AAAA", "caption": "Sales"}],
        },
    )
    make_task("researcher", title="Pending research")
    gateway.when(
        "Write a complete markdown report",
        "# Report\n{{image:task-analysis_viz_0:Sales chart}}\n{{image:missing:Oops}}",
    )
    task = make_task("writer", title="Report")

    report = asyncio.run(Writer(context).execute_task(task))

    assert "![Sales chart](data:image/png;base64,AAAA)" in report.content
    assert "[Image Not Found: missing]" in report.content
    assert report.images == ["task-analysis_viz_0"]
    prompt = gateway.prompts[-1]
    assert "--- Analysis ---" in prompt
    assert "Sales grew" in prompt
    assert "Pending research" not in prompt
    assert _entries(store, task)["report"].value["format"] == "markdown"


def test_writer_expands_subfigures() -> None:
    images = [
        ImageResource(id="img1", task_id="t", task_title="T", data="https://x/a.png", caption="A"),
        ImageResource(id="img2", task_id="t", task_title="T", data="QUJD", caption="B"),
    ]
    text = "Intro\n{{subfigures:\nimg1:Left\nimg2:Right\n:Both panels}}\nEnd"

    expanded = Writer.expand_placeholders(text, images)

    assert '<div class="subfigures">' in expanded
    assert "![Left](https://x/a.png)" in expanded
    assert "![Right](data:image/png;base64,QUJD)" in expanded
    assert "<em>Both panels</em>" in expanded
    assert expanded.endswith("End")


def test_registry_resolves_custom_actors_from_the_store(context, store) -> None:
    registry = default_registry(context)
    store.save_custom_actor(CustomActorDefinition(id="legal", name="Legal reviewer"))

    actor = registry.create("CUSTOM:legal")

    assert isinstance(actor, CustomActor)
    assert actor.actor_key == "custom:legal"
    with pytest.raises(UnknownActorError):
        registry.create("CUSTOM:ghost")
    with pytest.raises(ValueError):
        registry.register(ActorKind.CUSTOM, lambda context: actor)
    assert ActorKind.COMPOSER in registry.kinds()


def test_custom_actor_prompt_forms(context, store, make_task) -> None:
    definition = CustomActorDefinition(
        id="legal", name="Legal reviewer", description="Checks contracts"
    )
    store.save_custom_actor(definition)
    actor = CustomActor(context, definition)
    task = make_task("CUSTOM:legal", description="the lease")

    assert "named \"Legal reviewer\"" in actor.build_prompt(task, "")

    actor.settings = actor.settings.merged({"custom_instructions": "Review {task} carefully"})
    assert actor.build_prompt(task, "") == "Review the lease carefully"

    actor.settings = actor.settings.merged({"custom_instructions": "Be strict."})
    assert actor.build_prompt(task, "[]") == (
        "Be strict.\n\nTask:\nthe lease\n\nResults from earlier tasks:\n[]"
    )


def test_custom_actor_runs_with_persisted_definition(context, gateway, store, make_task) -> None:
    store.save_custom_actor(CustomActorDefinition(id="legal", name="Legal reviewer"))
    actor = default_registry(context).create("CUSTOM:legal")
    actor.update_instructions("Flag risky clauses in {description}")
    gateway.when("Flag risky clauses", "Clause 4 is risky")
    task = make_task("CUSTOM:legal", description="the lease")

    result = asyncio.run(actor.execute_task(task))

    assert gateway.prompts == ["Flag risky clauses in the lease"]
    assert result.content == "Clause 4 is risky"
    entry = _entries(store, task)["custom_result"]
    assert entry.metadata == {"custom_actor_id": "legal"}
    saved = store.get_custom_actor("legal")
    assert saved.settings.custom_instructions == "Flag risky clauses in {description}"


def test_custom_actor_honours_disabled_config_and_store_settings(
    context, config, gateway, store, make_task
) -> None:
    store.save_custom_actor(CustomActorDefinition(id="legal", name="Legal reviewer"))
    registry = default_registry(context)
    task = make_task("CUSTOM:legal", description="the lease")

    config.actors["custom:legal"] = {"enabled": False}
    with pytest.raises(ActorDisabledError) as excinfo:
        asyncio.run(registry.create("CUSTOM:legal").execute_task(task))
    assert excinfo.value.actor_key == "custom:legal"

    config.actors.clear()
    actor = registry.create("CUSTOM:legal")
    store.save_actor_settings("custom:legal", {"enabled": False})
    with pytest.raises(ActorDisabledError):
        asyncio.run(actor.execute_task(task))

    assert task.status is TaskStatus.PENDING
    assert gateway.prompts == []
