import asyncio
import json

from conftest import FakeBackend, assistant, first_user_message, make_context
from repo_analyzer.executor.document_store import DRAFT
from repo_analyzer.orchestrator.schemas import DocumentTask
from repo_analyzer.orchestrator.writer import (
    SIDEBAR_HEADER,
    DocumentWriter,
    assign_document_names,
    build_sidebar,
    document_name,
)

PROJECT = "github.com/acme/orders"


def test_document_name_strips_whitespace_and_path_characters() -> None:
    assert document_name("Order Intake") == "OrderIntake"
    assert document_name("API / CLI: usage?") == "APICLIusage"
    assert document_name("   ") == "document"
    assert document_name("订单 处理") == "订单处理"


def test_assign_document_names_deduplicates() -> None:
    tasks = [DocumentTask(title=t) for t in ["Setup", "Set up", "Usage", "Setup"]]
    assert assign_document_names(tasks) == ["Setup", "Setup-2", "Usage", "Setup-3"]


def test_build_sidebar_format() -> None:
    sidebar = build_sidebar([("Overview", "Overview"), ("Order Intake", "OrderIntake")])
    assert sidebar == (
        SIDEBAR_HEADER + "\n"
        "- [Overview](Overview.md)\n\n"
        "- [Order Intake](OrderIntake.md)"
    )


def _writer_responder(fail_title=None, active=None, peak=None):
    def respond(messages, tools, json_output):
        prompt = first_user_message(messages)
        if prompt.startswith("Write the document"):
            title = prompt.split('"')[1]
            if title == fail_title:
                return assistant("I refuse to answer in JSON")
            return assistant(json.dumps({"document": f"# {title}"}))
        title = prompt.split("Title: ", 1)[1].split("\n", 1)[0]
        return assistant(json.dumps({"title": f"ZH {title}", "document": f"# ZH {title}"}))

    return respond


def test_one_failing_task_does_not_affect_the_others(llm_config, database, repo_dir) -> None:
    backend = FakeBackend(responder=_writer_responder(fail_title="Billing"))
    ctx = make_context(llm_config, database, backend)
    tasks = [DocumentTask(title="Overview"), DocumentTask(title="Billing", feature_id="F2"), DocumentTask(title="Usage")]
    settled = []

    async def scenario():
        writer = DocumentWriter(ctx, repo_dir, PROJECT, "{}", on_task_settled=lambda n, total: settled.append((n, total)))
        report = await writer.write_all(tasks)
        docs = {
            (name, lang): await ctx.document_store.get_doc(PROJECT, name, lang, status=DRAFT)
            for name in ("Overview", "Billing", "Usage")
            for lang in ("en-US", "zh-CN")
        }
        return report, docs

    report, docs = asyncio.run(scenario())

    assert [d.title for d in report.written] == ["Overview", "Usage"]
    assert [(f.title, f.feature_id) for f in report.failed] == [("Billing", "F2")]
    assert "Billing" in report.failed[0].error
    assert docs[("Overview", "en-US")] == "# Overview"
    assert docs[("Overview", "zh-CN")] == "# ZH Overview"
    assert docs[("Usage", "zh-CN")] == "# ZH Usage"
    assert docs[("Billing", "en-US")] is None
    assert sorted(settled) == [(1, 3), (2, 3), (3, 3)]
    assert report.written[0].translated_title == "ZH Overview"
    assert report.written[0].languages == ["en-US", "zh-CN"]


class _SlowBackend(FakeBackend):
    def __init__(self):
        super().__init__(responder=_writer_responder())
        self.active = 0
        self.peak = 0

    async def chat(self, messages, *, tools=None, json_output=False):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().chat(messages, tools=tools, json_output=json_output)
        finally:
            self.active -= 1


def test_fan_out_respects_concurrency_limit(llm_config, database, repo_dir) -> None:
    backend = _SlowBackend()
    ctx = make_context(llm_config, database, backend, writer_concurrency=2)
    tasks = [DocumentTask(title=f"Doc {i}") for i in range(6)]

    report = asyncio.run(DocumentWriter(ctx, repo_dir, PROJECT, "{}").write_all(tasks))

    assert len(report.written) == 6
    assert backend.peak == 2
