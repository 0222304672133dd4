"""Agent: a bounded tool-calling conversation against one LLM provider.

One execute() call runs a loop:

    system (environment + role) → history → user (action)
    ┌─> provider call
    │   assistant reply appended
    │   no tool calls:
    │     json_output → done
    │     otherwise ask the continuation oracle; "continue" appends a
    │     synthetic user turn and loops, "yield" is done
    │   tool calls:
    │     each call is resolved, executed and answered with a tool
    │     message carrying the call id
    └── until done or the iteration ceiling is reached

The transcript is the agent's only memory. Provider errors are logged and
the loop goes straight to the next iteration; the failed iteration still
counts against the ceiling. Tool errors and unknown tools never escape:
they become textual tool results the model can react to.
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from repo_analyzer import config as settings
from repo_analyzer.agent.continuation import LLMContinuationOracle, ShouldContinue
from repo_analyzer.agent.environment import build_environment_context
from repo_analyzer.agent.schemas import AgentResult
from repo_analyzer.agent.tools import (
    AbortSignal,
    ToolRegistryProtocol,
    ToolResult,
    validate_arguments,
)
from repo_analyzer.errors import OperationAborted, ToolExecutionError, ValidationError
from repo_analyzer.llm.backends import ChatBackend
from repo_analyzer.llm.factory import get_backend
from repo_analyzer.llm.key_pool import KeyPool
from repo_analyzer.llm.schemas import ChatMessage, LLMConfig, ToolCall

logger = logging.getLogger(__name__)

CONTINUE_PROMPT = "Please continue."
PROMPT_SEPARATOR = "\n\n---\n\n"


class Agent:
    """Stateful tool-calling agent bound to one repository and one API key.

    The key is drawn from the KeyPool when the agent is built, so agents
    created from the same pool rotate through the configured keys.
    """

    def __init__(
        self,
        llm_config: LLMConfig,
        repository_path: Union[str, Path],
        tool_registry: Optional[ToolRegistryProtocol] = None,
        *,
        key_pool: Optional[KeyPool] = None,
        backend: Optional[ChatBackend] = None,
        backend_factory: Callable[[LLMConfig, str], ChatBackend] = get_backend,
        continuation: Optional[ShouldContinue] = None,
        max_iterations: Optional[int] = None,
        label: str = "agent",
    ):
        if not str(repository_path).strip():
            raise ValidationError("Agent requires a repository path")

        self.llm_config = llm_config
        self.repository_path = Path(repository_path)
        self.tool_registry = tool_registry
        self.max_iterations = max_iterations or settings.MAX_AGENT_ITERATIONS
        self.label = label

        if backend is None:
            pool = key_pool or KeyPool(llm_config.api_keys)
            backend = backend_factory(llm_config, pool.next_key())
        self._backend = backend
        self._continuation = continuation or LLMContinuationOracle(backend)

    async def execute(
        self,
        action_prompt: str,
        role_prompt: str,
        history: Optional[list[ChatMessage]] = None,
        with_env: bool = True,
        json_output: bool = False,
        with_tools: bool = True,
        abort_signal: Optional[AbortSignal] = None,
    ) -> AgentResult:
        """Run the loop to completion or to the iteration ceiling.

        Args:
            action_prompt: The task, sent as the user turn
            role_prompt: Persona/instructions, appended to the system prompt
            history: Prior turns inserted between system and user
            with_env: Prepend the environment preamble (date, OS, folders)
            json_output: Request JSON mode and finish on the first tool-free reply
            with_tools: Advertise the registry's tools to the model
            abort_signal: Cancels in-flight provider and tool calls

        Returns:
            AgentResult. success=False only when the ceiling was reached.
        """
        abort_signal = abort_signal or AbortSignal()
        transcript = [ChatMessage.system(self._build_system_prompt(role_prompt, with_env))]
        transcript.extend(history or [])
        transcript.append(ChatMessage.user(action_prompt))

        tools = None
        if with_tools and self.tool_registry is not None:
            tools = self.tool_registry.list_tools() or None

        iterations = 0
        while iterations < self.max_iterations:
            iterations += 1

            try:
                reply = await abort_signal.guard(
                    self._backend.chat(list(transcript), tools=tools, json_output=json_output)
                )
            except Exception as e:
                logger.error(f"[{self.label}] Provider call failed on iteration {iterations}: {e}")
                continue

            transcript.append(reply)

            if not reply.tool_calls:
                if json_output:
                    return self._finish(reply, iterations, transcript)
                try:
                    decision = await abort_signal.guard(self._continuation.should_continue(reply))
                except OperationAborted as e:
                    logger.warning(f"[{self.label}] Continuation check aborted on iteration {iterations}: {e}")
                    continue
                if not decision.continue_:
                    return self._finish(reply, iterations, transcript)
                logger.debug(f"[{self.label}] Model keeps the turn: {decision.reasoning}")
                transcript.append(ChatMessage.user(CONTINUE_PROMPT))
                continue

            for call in reply.tool_calls:
                result = await self._run_tool(call, abort_signal)
                transcript.append(ChatMessage.tool(call.id, result.llm_content))

        message = f"Agent exceeded maximum iterations ({self.max_iterations}) without completing"
        logger.warning(f"[{self.label}] {message}")
        return AgentResult(
            content="",
            iterations=iterations,
            success=False,
            error=message,
            history=transcript,
        )

    async def aclose(self) -> None:
        await self._backend.aclose()

    def _build_system_prompt(self, role_prompt: str, with_env: bool) -> str:
        if not with_env:
            return role_prompt
        return build_environment_context(self.repository_path) + PROMPT_SEPARATOR + role_prompt

    def _finish(self, reply: ChatMessage, iterations: int, transcript: list[ChatMessage]) -> AgentResult:
        logger.info(
            f"[{self.label}] Completed in {iterations} iteration(s), "
            f"{len(reply.content):,} chars"
        )
        return AgentResult(
            content=reply.content,
            iterations=iterations,
            success=True,
            history=transcript,
        )

    async def _run_tool(self, call: ToolCall, abort_signal: AbortSignal) -> ToolResult:
        """Resolve and execute one tool call. Never raises."""
        tool = self.tool_registry.get_tool(call.name) if self.tool_registry else None
        if tool is None:
            logger.warning(f"[{self.label}] Model requested unknown tool: {call.name}")
            return ToolResult(success=False, error=f'tool "{call.name}" not found')

        problems = validate_arguments(tool.definition, call.arguments)
        if problems:
            return ToolResult(success=False, error=f"invalid arguments for {call.name}: {'; '.join(problems)}")

        try:
            return await abort_signal.guard(tool.execute(call.arguments, abort_signal))
        except Exception as e:
            error = ToolExecutionError(call.name, str(e))
            logger.warning(f"[{self.label}] {error}")
            return ToolResult(success=False, error=str(error))
