"""Structured-output extraction from free-form model replies.

Models asked for JSON still wrap it in prose or ```json fences. The
extractor takes the slice from the first '{' to the last '}' and parses
that. There is no brace balancing: a reply with stray braces in the
surrounding prose can produce the wrong slice, which then fails to parse
and is handled by the bounded reprompt in extract_json().
"""

import json
import logging
from typing import Any, Awaitable, Callable, Optional

from repo_analyzer.errors import MalformedOutputError

logger = logging.getLogger(__name__)

DEFAULT_MAX_REPROMPTS = 2


def parse_json(text: str) -> dict[str, Any]:
    """Parse the JSON object embedded in a model reply.

    Args:
        text: Raw reply text

    Returns:
        The parsed object

    Raises:
        MalformedOutputError: If there is no brace pair or the slice is not valid JSON
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise MalformedOutputError("No JSON object found in reply", raw_text=text)

    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"Invalid JSON in reply: {e}", raw_text=text) from e


async def extract_json(
    text: str,
    reprompt: Optional[Callable[[str], Awaitable[str]]] = None,
    max_reprompts: int = DEFAULT_MAX_REPROMPTS,
    label: str = "",
) -> dict[str, Any]:
    """Parse a reply, asking the model to repair it when parsing fails.

    Args:
        text: First reply
        reprompt: Called with a correction message; returns a fresh reply.
            When None, the first parse failure is raised.
        max_reprompts: Upper bound on repair attempts
        label: Log prefix

    Raises:
        MalformedOutputError: When the last attempt still does not parse
    """
    attempt = 0
    while True:
        try:
            return parse_json(text)
        except MalformedOutputError as e:
            if reprompt is None or attempt >= max_reprompts:
                raise
            attempt += 1
            logger.warning(f"[{label}] Malformed JSON reply, reprompting ({attempt}/{max_reprompts}): {e}")
            text = await reprompt(
                f"Your previous reply could not be parsed ({e}). "
                "Reply again with only the complete JSON object, no prose and no code fences."
            )


def require_keys(data: dict[str, Any], keys: list[str], label: str = "") -> dict[str, Any]:
    """Raise MalformedOutputError if any of keys is missing from data."""
    missing = [k for k in keys if k not in data]
    if missing:
        raise MalformedOutputError(f"[{label}] Reply JSON is missing keys: {missing}", raw_text=json.dumps(data)[:2000])
    return data
