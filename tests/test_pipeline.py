import asyncio
import json

import pytest

from conftest import FakeBackend, assistant, first_user_message, make_context, pipeline_responder
from repo_analyzer.errors import StageFailure, ValidationError
from repo_analyzer.executor.cache import InMemoryCache
from repo_analyzer.executor.document_store import DRAFT
from repo_analyzer.executor.schemas import ProgressStatus
from repo_analyzer.orchestrator.pipeline import AnalysisPipeline, cache_key, project_key_for
from repo_analyzer.orchestrator.schemas import AnalysisRequest, AnalysisResult
from repo_analyzer.orchestrator.writer import SIDEBAR_HEADER, SIDEBAR_NAME

URL = "https://github.com/acme/orders.git"
PROJECT = "github.com/acme/orders"


def _request(repo_dir) -> AnalysisRequest:
    return AnalysisRequest(repository_url=URL, repository_path=str(repo_dir), metadata={"requested_by": "ci"})


def test_project_key_for() -> None:
    assert project_key_for(URL) == PROJECT
    assert project_key_for("git@github.com:acme/orders.git") == PROJECT
    assert project_key_for("file:///srv/checkouts/orders/") == "srv/checkouts/orders"


def test_full_run_publishes_documents_in_both_languages(llm_config, database, repo_dir) -> None:
    backend = FakeBackend(responder=pipeline_responder)
    ctx = make_context(llm_config, database, backend)
    events = []

    async def scenario():
        result = await AnalysisPipeline(ctx).run(
            _request(repo_dir), on_progress=lambda stage, pct, details: events.append((stage, pct))
        )
        store = ctx.document_store
        return (
            result,
            await store.list_docs(PROJECT, "en-US"),
            await store.get_doc(PROJECT, SIDEBAR_NAME, "en-US"),
            await store.get_doc(PROJECT, SIDEBAR_NAME, "zh-CN"),
            await store.get_doc(PROJECT, "Billing", "zh-CN"),
            await ctx.progress_store.get(URL),
            await ctx.cache.get(cache_key(URL, "full")),
        )

    result, names, sidebar_en, sidebar_zh, billing_zh, progress, cached = asyncio.run(scenario())

    assert [d.doc_name for d in result.documents] == ["Overview", "OrderIntake", "BillingDeepDive", "Billing"]
    assert {d.feature_id for d in result.feature_docs} == {"F1", "F2"}
    assert result.failed_documents == []
    assert result.metadata == {"requested_by": "ci"}
    assert result.structure.languages["Python"] == 2
    assert result.dependency_graph.module_graph[0].source == "app.main"
    assert result.core_features.ranking_rule == "by number of callers"

    assert names == sorted(["Overview", "OrderIntake", "BillingDeepDive", "Billing", SIDEBAR_NAME])
    assert sidebar_en.startswith(SIDEBAR_HEADER + "\n- [Overview](Overview.md)\n\n- [Order Intake](OrderIntake.md)")
    assert "- [ZH Billing](Billing.md)" in sidebar_zh
    assert billing_zh == "# ZH Billing"

    percentages = [pct for _, pct in events]
    assert percentages[0] == 5
    assert percentages[-1] == 100
    assert percentages == sorted(percentages)
    for checkpoint in (30, 40, 50, 60, 70, 97):
        assert checkpoint in percentages

    assert progress.status == ProgressStatus.COMPLETED
    assert AnalysisResult.model_validate(cached) == result
    assert ctx.session_manager.active_session_count() == 0


def test_cache_hit_short_circuits_all_agents(llm_config, database, repo_dir) -> None:
    backend = FakeBackend(responder=pipeline_responder)
    ctx = make_context(llm_config, database, backend)
    pipeline = AnalysisPipeline(ctx)
    first = asyncio.run(pipeline.run(_request(repo_dir)))
    calls_after_first_run = len(backend.calls)
    events = []

    second = asyncio.run(
        pipeline.run(_request(repo_dir), on_progress=lambda stage, pct, details: events.append(pct))
    )

    assert len(backend.calls) == calls_after_first_run
    assert events == [100]
    assert second == first
    assert ctx.session_manager.active_session_count() == 0


def test_stage_failure_marks_progress_failed_and_ends_session(llm_config, database, repo_dir) -> None:
    def responder(messages, tools, json_output):
        if "Build the module dependency graph" in first_user_message(messages):
            return assistant("no graph for you")
        return pipeline_responder(messages, tools, json_output)

    backend = FakeBackend(responder=responder)
    ctx = make_context(llm_config, database, backend)
    events = []

    with pytest.raises(StageFailure) as exc_info:
        asyncio.run(
            AnalysisPipeline(ctx).run(
                _request(repo_dir), on_progress=lambda stage, pct, details: events.append((stage, pct))
            )
        )

    assert exc_info.value.stage == "dependencies"
    progress = asyncio.run(ctx.progress_store.get(URL))
    assert progress.status == ProgressStatus.FAILED
    assert "dependencies" in progress.details
    assert events[-1] == ("Failed", 0)
    assert asyncio.run(ctx.cache.get(cache_key(URL, "full"))) is None
    assert asyncio.run(ctx.document_store.list_docs(PROJECT, "en-US")) == []
    assert ctx.session_manager.active_session_count() == 0


def test_document_failures_are_reported_not_raised(llm_config, database, repo_dir) -> None:
    def responder(messages, tools, json_output):
        if first_user_message(messages).startswith('Write the document "Billing Deep Dive"'):
            return assistant("prose only")
        return pipeline_responder(messages, tools, json_output)

    ctx = make_context(llm_config, database, FakeBackend(responder=responder))

    result = asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))

    assert [f.title for f in result.failed_documents] == ["Billing Deep Dive"]
    assert "BillingDeepDive" not in [d.doc_name for d in result.documents]
    sidebar = asyncio.run(ctx.document_store.get_doc(PROJECT, SIDEBAR_NAME, "en-US"))
    assert "BillingDeepDive.md" not in sidebar


def test_all_documents_failing_fails_the_run(llm_config, database, repo_dir) -> None:
    def responder(messages, tools, json_output):
        if first_user_message(messages).startswith("Write the document"):
            return assistant("prose only")
        return pipeline_responder(messages, tools, json_output)

    ctx = make_context(llm_config, database, FakeBackend(responder=responder))

    with pytest.raises(StageFailure) as exc_info:
        asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))
    assert exc_info.value.stage == "writing"
    assert ctx.session_manager.active_session_count() == 0


def test_scheduler_reply_without_tasks_fails(llm_config, database, repo_dir) -> None:
    def responder(messages, tools, json_output):
        if first_user_message(messages).startswith("Documentation plan:"):
            return assistant(json.dumps({"tasks": []}))
        return pipeline_responder(messages, tools, json_output)

    ctx = make_context(llm_config, database, FakeBackend(responder=responder))

    with pytest.raises(StageFailure) as exc_info:
        asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))
    assert exc_info.value.stage == "scheduling"


def test_missing_repository_path_is_rejected(llm_config, database, tmp_path) -> None:
    ctx = make_context(llm_config, database, FakeBackend(responder=pipeline_responder))
    request = AnalysisRequest(repository_url=URL, repository_path=str(tmp_path / "missing"))

    with pytest.raises(ValidationError):
        asyncio.run(AnalysisPipeline(ctx).run(request))
    assert ctx.session_manager.active_session_count() == 0
    progress = asyncio.run(ctx.progress_store.get(URL))
    assert progress.status == ProgressStatus.FAILED
    assert "not_started" in progress.details


def test_cache_error_before_first_stage_is_recorded(llm_config, database, repo_dir) -> None:
    class BrokenCache(InMemoryCache):
        async def get(self, key):
            if key.startswith("analysis:"):
                raise ConnectionError("cache unreachable")
            return await super().get(key)

    ctx = make_context(llm_config, database, FakeBackend(responder=pipeline_responder), cache=BrokenCache())

    with pytest.raises(ConnectionError):
        asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))
    progress = asyncio.run(ctx.progress_store.get(URL))
    assert progress.status == ProgressStatus.FAILED
    assert "cache unreachable" in progress.details


def test_document_failing_translation_is_not_published(llm_config, database, repo_dir) -> None:
    def responder(messages, tools, json_output):
        prompt = first_user_message(messages)
        if prompt.startswith("Translate the following") and "Title: Billing Deep Dive\n" in prompt:
            return assistant("translation unavailable")
        return pipeline_responder(messages, tools, json_output)

    ctx = make_context(llm_config, database, FakeBackend(responder=responder))

    result = asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))

    assert [f.title for f in result.failed_documents] == ["Billing Deep Dive"]
    for language in ("en-US", "zh-CN"):
        published = asyncio.run(ctx.document_store.list_docs(PROJECT, language))
        assert published == sorted([d.doc_name for d in result.documents] + [SIDEBAR_NAME])
        assert "BillingDeepDive" not in published
    assert asyncio.run(ctx.document_store.list_docs(PROJECT, "en-US", status=DRAFT)) == []


def test_only_the_current_run_is_published(llm_config, database, repo_dir) -> None:
    translations_work = False

    def responder(messages, tools, json_output):
        prompt = first_user_message(messages)
        if prompt.startswith("Translate the following") and not translations_work:
            return assistant("translation unavailable")
        if prompt.startswith("Documentation plan:") and translations_work:
            return assistant(json.dumps({
                "document_tasks": [{"title": "Order Intake", "goal": "Explain intake", "featureId": "F1"}]
            }))
        return pipeline_responder(messages, tools, json_output)

    ctx = make_context(llm_config, database, FakeBackend(responder=responder))

    with pytest.raises(StageFailure):
        asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))
    assert asyncio.run(ctx.document_store.get_doc(PROJECT, "BillingDeepDive", "en-US")) is None
    assert asyncio.run(ctx.document_store.list_docs(PROJECT, "en-US", status=DRAFT)) == []

    # A draft left behind by an interrupted run
    asyncio.run(ctx.document_store.save_doc(PROJECT, "Stale", "# Stale", "en-US"))
    translations_work = True
    result = asyncio.run(AnalysisPipeline(ctx).run(_request(repo_dir)))

    assert [d.doc_name for d in result.documents] == ["Overview", "OrderIntake", "Billing"]
    published = asyncio.run(ctx.document_store.list_docs(PROJECT, "en-US"))
    assert published == ["Billing", "OrderIntake", "Overview", SIDEBAR_NAME]
    assert asyncio.run(ctx.document_store.get_doc(PROJECT, "Stale", "en-US")) is None
