import json
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from repo_analyzer.agent.continuation import NeverContinue
from repo_analyzer.executor.cache import InMemoryCache
from repo_analyzer.executor.db import Database
from repo_analyzer.executor.document_store import SqlDocumentStore
from repo_analyzer.llm.schemas import ChatMessage, LLMConfig, MessageRole, ToolCall, ToolDefinition
from repo_analyzer.orchestrator.context import PipelineContext

Responder = Callable[[list[ChatMessage], Optional[list[ToolDefinition]], bool], ChatMessage]


def assistant(content: str = "", tool_calls: Optional[list[ToolCall]] = None) -> ChatMessage:
    return ChatMessage(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls or [])


def first_user_message(messages: list[ChatMessage]) -> str:
    for message in messages:
        if message.role == MessageRole.USER:
            return message.content
    return ""


class FakeBackend:
    """Chat backend driven by a responder function or a fixed script of replies.

    A scripted item that is an Exception instance is raised instead of returned.
    """

    def __init__(self, responder: Optional[Responder] = None, script: Optional[list[Any]] = None):
        self._responder = responder
        self._script = list(script or [])
        self.calls: list[dict[str, Any]] = []

    @property
    def model_id(self) -> str:
        return "fake-model"

    async def chat(self, messages, *, tools=None, json_output=False):
        self.calls.append({"messages": list(messages), "tools": tools, "json_output": json_output})
        if self._responder is not None:
            return self._responder(messages, tools, json_output)
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        pass


FEATURES = {
    "features": [
        {
            "id": "F1",
            "name": "Order Intake",
            "whyCore": "Every request starts here",
            "importance": 0.9,
            "entryPoints": ["app/orders.py"],
            "primaryModules": ["app"],
            "keySymbols": ["create_order"],
        },
        {
            "id": "F2",
            "name": "Billing",
            "whyCore": "Turns orders into invoices",
            "importance": 0.7,
        },
    ],
    "rankingRule": "by number of callers",
}


def pipeline_responder(messages, tools, json_output) -> ChatMessage:
    """Answers every pipeline prompt with a well-formed reply."""
    prompt = first_user_message(messages)
    if "Produce a structured overview" in prompt:
        return assistant(
            "Here is the overview:\n```json\n"
            + json.dumps({
                "modules": [{"path": "app", "role": "application code"}],
                "techStack": [{"type": "language", "name": "Python", "evidence": "app/*.py"}],
                "entryCandidates": [{"path": "app/main.py", "why": "__main__ block"}],
                "notes": ["small service"],
            })
            + "\n```"
        )
    if "Build the module dependency graph" in prompt:
        return assistant(json.dumps({
            "moduleGraph": [{"from": "app.main", "to": "app.orders", "type": "import"}],
            "callGraph": [{"caller": "main", "callee": "create_order", "file": "app/main.py", "line": 3}],
            "hotspots": [{"symbol": "create_order", "fanIn": 2, "fanOut": 1}],
        }))
    if "Identify the core features" in prompt:
        return assistant(json.dumps(FEATURES))
    if "Plan the documentation" in prompt:
        return assistant("Start with an overview, then one page per feature, then a billing deep dive.")
    if "Documentation plan:" in prompt:
        return assistant(json.dumps({
            "document_tasks": [
                {"title": "Order Intake", "goal": "Explain intake", "outline": "flow", "targetReader": "devs", "featureId": "F1"},
                {"title": "Billing Deep Dive", "goal": "Explain invoices", "outline": "steps", "targetReader": "devs", "featureId": "F9"},
            ]
        }))
    if prompt.startswith("Write the document"):
        title = prompt.split('"')[1]
        return assistant(json.dumps({"document": f"# {title}\n\nBody of {title}."}))
    if prompt.startswith("Translate the following"):
        title = prompt.split("Title: ", 1)[1].split("\n", 1)[0]
        return assistant(json.dumps({"title": f"ZH {title}", "document": f"# ZH {title}"}))
    raise AssertionError(f"Unexpected prompt: {prompt[:80]}")


@pytest.fixture
def llm_config() -> LLMConfig:
    return LLMConfig(api_keys=["key-a", "key-b"], model="fake-model")


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    (repo / "app").mkdir(parents=True)
    (repo / "app" / "main.py").write_text(
        "from app.orders import create_order\n\nif __name__ == '__main__':\n    create_order()\n"
    )
    (repo / "app" / "orders.py").write_text(
        "def create_order(items=None):\n"
        "    if not items:\n"
        "        return None\n"
        "    for item in items:\n"
        "        print(item)\n"
    )
    (repo / "README.md").write_text("# Orders\n")
    (repo / "requirements.txt").write_text("fastapi>=0.110\nhttpx==0.27.0  # client\n")
    (repo / "node_modules").mkdir()
    (repo / "node_modules" / "ignored.js").write_text("eval('x')\n")
    return repo


@pytest.fixture
def database(tmp_path: Path) -> Database:
    return Database(sqlite_path=tmp_path / "test.db")


def make_context(llm_config: LLMConfig, database: Database, backend: FakeBackend, **overrides) -> PipelineContext:
    values = dict(
        llm_config=llm_config,
        cache=InMemoryCache(),
        document_store=SqlDocumentStore(database),
        backend_factory=lambda config, key: backend,
        continuation=NeverContinue(),
        writer_concurrency=2,
        max_iterations=10,
    )
    values.update(overrides)
    return PipelineContext(**values)
