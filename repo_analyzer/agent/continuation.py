"""Continuation oracles: decide whether the model should keep the turn.

When a reply contains no tool calls and no JSON was requested, the agent
asks an oracle whether the model paused mid-task ("continue") or handed
control back ("yield"). The oracle only sees the last assistant turn.

Implementations:
- LLMContinuationOracle: isolated JSON-mode call against a chat backend
- HeuristicContinuation: rule-based, no LLM call
- NeverContinue: always yields
"""

import logging
import re
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from repo_analyzer.extraction.parser import parse_json
from repo_analyzer.llm.backends import ChatBackend
from repo_analyzer.llm.schemas import ChatMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContinuationDecision:
    continue_: bool
    reasoning: str = ""


@runtime_checkable
class ShouldContinue(Protocol):
    async def should_continue(self, last_turn: ChatMessage) -> ContinuationDecision: ...


ORACLE_SYSTEM_PROMPT = """Analyze ONLY the assistant turn you are given and decide who should speak next.

Rules, applied in order:
1. If the turn states an immediate next action the assistant itself will take
   ("Next, I will...", "Now I'll read...", "Let me check..."), or is visibly cut
   off mid-thought, the MODEL speaks next.
2. If the turn ends with a direct question to the user, the USER speaks next.
3. If the turn is a completed answer, summary or report, the USER speaks next.

Respond in JSON: {"reasoning": "<one sentence>", "next_speaker": "model" | "user"}"""


class LLMContinuationOracle:
    """Ask the model itself, in a separate transcript, whether it is done."""

    def __init__(self, backend: ChatBackend):
        self._backend = backend

    async def should_continue(self, last_turn: ChatMessage) -> ContinuationDecision:
        if not last_turn.content.strip():
            return ContinuationDecision(False, "empty turn")

        messages = [
            ChatMessage.system(ORACLE_SYSTEM_PROMPT),
            ChatMessage.user(f"Assistant turn to analyze:\n\n{last_turn.content}"),
        ]
        try:
            reply = await self._backend.chat(messages, json_output=True)
            verdict = parse_json(reply.content)
        except Exception as e:
            logger.warning(f"Continuation check failed, yielding to user: {e}")
            return ContinuationDecision(False, f"oracle error: {e}")

        next_speaker = str(verdict.get("next_speaker", "user")).lower()
        return ContinuationDecision(next_speaker == "model", str(verdict.get("reasoning", "")))


_INTENT_PATTERN = re.compile(
    r"\b(next,? i('| wi)ll|now i('| wi)ll|let me|i will now|i'll now|i'm going to|proceeding to)\b",
    re.IGNORECASE,
)


class HeuristicContinuation:
    """Rule-based oracle. Looks at the tail of the turn only."""

    def __init__(self, tail_chars: int = 400):
        self._tail_chars = tail_chars

    async def should_continue(self, last_turn: ChatMessage) -> ContinuationDecision:
        text = last_turn.content.strip()
        if not text:
            return ContinuationDecision(False, "empty turn")
        if text.endswith("?"):
            return ContinuationDecision(False, "question to the user")
        tail = text[-self._tail_chars:]
        if _INTENT_PATTERN.search(tail) or text.endswith((":", "...")):
            return ContinuationDecision(True, "announced a next step")
        return ContinuationDecision(False, "turn looks complete")


class NeverContinue:
    async def should_continue(self, last_turn: ChatMessage) -> ContinuationDecision:
        return ContinuationDecision(False, "continuation disabled")
