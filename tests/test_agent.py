import asyncio

import pytest

from conftest import FakeBackend, assistant
from repo_analyzer.agent.continuation import ContinuationDecision, HeuristicContinuation, NeverContinue
from repo_analyzer.agent.runner import CONTINUE_PROMPT, Agent
from repo_analyzer.agent.tools import AbortSignal, FunctionTool, ToolRegistry
from repo_analyzer.errors import ProviderError, ValidationError
from repo_analyzer.llm.key_pool import KeyPool
from repo_analyzer.llm.schemas import MessageRole, ToolCall


async def _read_file(path: str) -> str:
    return f"contents of {path}"


async def _explode(**kwargs) -> str:
    raise RuntimeError("disk on fire")


READ_SCHEMA = {
    "type": "object",
    "properties": {"path": {"type": "string"}},
    "required": ["path"],
}


def make_registry() -> ToolRegistry:
    return ToolRegistry([
        FunctionTool("read_file", _read_file, "Read a file", READ_SCHEMA),
        FunctionTool("explode", _explode, "Always fails"),
    ])


def make_agent(backend, repo_dir, **kwargs) -> Agent:
    kwargs.setdefault("continuation", NeverContinue())
    return Agent(
        kwargs.pop("config"),
        repo_dir,
        kwargs.pop("registry", make_registry()),
        backend=backend,
        **kwargs,
    )


def test_json_output_finishes_on_first_tool_free_reply(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[assistant('{"ok": true}')])
    agent = make_agent(backend, repo_dir, config=llm_config)

    result = asyncio.run(agent.execute("do it", "role", json_output=True))

    assert result.success
    assert result.iterations == 1
    assert result.content == '{"ok": true}'
    assert backend.calls[0]["json_output"] is True
    roles = [m.role for m in result.history]
    assert roles == [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT]


def test_loop_is_bounded_and_reports_exhaustion(llm_config, repo_dir) -> None:
    call = ToolCall(id="c1", name="read_file", arguments={"path": "a.py"})
    backend = FakeBackend(script=[assistant("", [call])])
    agent = make_agent(backend, repo_dir, config=llm_config, max_iterations=5)

    result = asyncio.run(agent.execute("loop forever", "role"))

    assert not result.success
    assert result.content == ""
    assert result.iterations == 5
    assert "maximum iterations (5)" in result.error
    # system + user, then assistant + tool per iteration
    assert len(result.history) == 2 + 2 * 5
    assert len(backend.calls) == 5


def test_unknown_tool_becomes_error_result(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[
        assistant("", [ToolCall(id="x1", name="no_such_tool", arguments={})]),
        assistant("final answer"),
    ])
    agent = make_agent(backend, repo_dir, config=llm_config)

    result = asyncio.run(agent.execute("go", "role"))

    assert result.success
    assert result.content == "final answer"
    tool_message = result.history[3]
    assert tool_message.role == MessageRole.TOOL
    assert tool_message.tool_call_id == "x1"
    assert 'tool "no_such_tool" not found' in tool_message.content


def test_tool_messages_follow_their_assistant_turn_in_order(llm_config, repo_dir) -> None:
    calls = [
        ToolCall(id="a", name="read_file", arguments={"path": "one.py"}),
        ToolCall(id="b", name="read_file", arguments={"path": "two.py"}),
    ]
    backend = FakeBackend(script=[assistant("reading", calls), assistant("done")])
    agent = make_agent(backend, repo_dir, config=llm_config)

    result = asyncio.run(agent.execute("go", "role"))

    history = result.history
    for index, message in enumerate(history):
        if message.role != MessageRole.TOOL:
            continue
        previous_assistant = next(
            m for m in reversed(history[:index]) if m.role == MessageRole.ASSISTANT
        )
        assert message.tool_call_id in {c.id for c in previous_assistant.tool_calls}
    assert [m.content for m in history[3:5]] == ["contents of one.py", "contents of two.py"]


def test_provider_error_is_logged_and_loop_continues(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[ProviderError("rate limited", status_code=429), assistant("recovered")])
    agent = make_agent(backend, repo_dir, config=llm_config)

    result = asyncio.run(agent.execute("go", "role"))

    assert result.success
    assert result.content == "recovered"
    assert result.iterations == 2


def test_tool_exception_is_recovered_as_error_text(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[
        assistant("", [ToolCall(id="e1", name="explode", arguments={})]),
        assistant("ok"),
    ])
    agent = make_agent(backend, repo_dir, config=llm_config)

    result = asyncio.run(agent.execute("go", "role"))

    assert result.success
    assert result.history[3].content.startswith("Error:")
    assert "disk on fire" in result.history[3].content


def test_invalid_arguments_are_reported_to_the_model(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[
        assistant("", [ToolCall(id="v1", name="read_file", arguments={"path": 3})]),
        assistant("ok"),
    ])
    agent = make_agent(backend, repo_dir, config=llm_config)

    result = asyncio.run(agent.execute("go", "role"))

    assert "parameter 'path' should be string" in result.history[3].content


def test_continuation_oracle_can_keep_the_turn(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[
        assistant("I looked at the layout. Next, I will read the entry point."),
        assistant("The entry point is main.py."),
    ])
    agent = make_agent(backend, repo_dir, config=llm_config, continuation=HeuristicContinuation())

    result = asyncio.run(agent.execute("go", "role"))

    assert result.success
    assert result.iterations == 2
    assert result.content == "The entry point is main.py."
    assert result.history[3].role == MessageRole.USER
    assert result.history[3].content == CONTINUE_PROMPT


def test_with_tools_false_sends_no_declarations(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[assistant("{}")])
    agent = make_agent(backend, repo_dir, config=llm_config)

    asyncio.run(agent.execute("go", "role", with_tools=False, json_output=True))
    assert backend.calls[0]["tools"] is None

    asyncio.run(agent.execute("go", "role", json_output=True))
    assert {t.name for t in backend.calls[1]["tools"]} == {"read_file", "explode"}


def test_environment_preamble_toggle(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[assistant("{}")])
    agent = make_agent(backend, repo_dir, config=llm_config)

    with_env = asyncio.run(agent.execute("go", "ROLE", json_output=True))
    without_env = asyncio.run(agent.execute("go", "ROLE", json_output=True, with_env=False))

    assert "Folder structure" in with_env.history[0].content
    assert "main.py" in with_env.history[0].content
    assert "node_modules" not in with_env.history[0].content
    assert with_env.history[0].content.endswith("ROLE")
    assert without_env.history[0].content == "ROLE"


def test_history_is_inserted_between_system_and_action(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[assistant("{}")])
    agent = make_agent(backend, repo_dir, config=llm_config)
    prior = asyncio.run(agent.execute("first", "role", json_output=True)).history[1:]

    result = asyncio.run(agent.execute("second", "role", history=prior, json_output=True))

    contents = [m.content for m in result.history]
    assert contents[1] == "first"
    assert contents[3] == "second"


def test_aborted_signal_fails_provider_calls(llm_config, repo_dir) -> None:
    backend = FakeBackend(script=[assistant("never seen")])
    agent = make_agent(backend, repo_dir, config=llm_config, max_iterations=3)
    signal = AbortSignal()
    signal.abort()

    result = asyncio.run(agent.execute("go", "role", abort_signal=signal))

    assert not result.success
    assert result.iterations == 3
    assert backend.calls == []



def test_abort_interrupts_the_continuation_check(llm_config, repo_dir) -> None:
    signal = AbortSignal()

    class SlowOracle:
        async def should_continue(self, last_turn):
            signal.abort()
            await asyncio.sleep(10)
            return ContinuationDecision(continue_=True, reasoning="unreachable")

    backend = FakeBackend(script=[assistant("Let me think about this")])
    agent = make_agent(backend, repo_dir, config=llm_config, continuation=SlowOracle(), max_iterations=3)

    result = asyncio.run(agent.execute("go", "role", abort_signal=signal))

    assert not result.success
    assert len(backend.calls) == 1
    assert CONTINUE_PROMPT not in [m.content for m in result.history]

def test_agents_rotate_keys_from_shared_pool(llm_config, repo_dir) -> None:
    seen_keys = []

    def factory(config, key):
        seen_keys.append(key)
        return FakeBackend(script=[assistant("{}")])

    pool = KeyPool(["k1", "k2"])
    for _ in range(3):
        Agent(llm_config, repo_dir, key_pool=pool, backend_factory=factory, continuation=NeverContinue())

    assert seen_keys == ["k1", "k2", "k1"]


def test_empty_repository_path_is_rejected(llm_config) -> None:
    with pytest.raises(ValidationError):
        Agent(llm_config, "", backend=FakeBackend(script=[assistant("")]))
