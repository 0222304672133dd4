"""Single-agent pipeline stages.

Each stage is one bounded Agent.execute call whose reply is parsed into a
schema. A stage either returns its output or raises StageFailure; there is
no partial output. Malformed JSON gets a bounded number of repair turns
in the same conversation before the stage gives up.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError

from repo_analyzer.agent.runner import Agent
from repo_analyzer.agent.schemas import AgentResult
from repo_analyzer.errors import MalformedOutputError, StageFailure
from repo_analyzer.executor.session_manager import SessionManager
from repo_analyzer.extraction.parser import extract_json
from repo_analyzer.llm.schemas import ChatMessage, MessageRole
from repo_analyzer.orchestrator.context import PipelineContext
from repo_analyzer.orchestrator.schemas import (
    CoreFeature,
    CoreFeatures,
    DocumentTask,
    PipelineStage,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

OVERVIEW_TASK = DocumentTask(
    title="Overview",
    goal="Provide a concise introduction to the current project",
    outline="Flexibly structure based on the project's actual content",
    target_reader="The project's intended audience",
)


def to_prompt_json(model: Any) -> str:
    """Compact JSON of a stage output for embedding in a later prompt."""
    if isinstance(model, BaseModel):
        model = model.model_dump(mode="json", by_alias=True, exclude_none=True)
    return json.dumps(model, ensure_ascii=False, indent=1)


def record_agent_activity(
    sessions: SessionManager, session_id: str, stage: PipelineStage, result: AgentResult
) -> None:
    """Copy the tool outcomes and a stage summary into the session."""
    pending: dict[str, str] = {}
    for message in result.history:
        if message.role == MessageRole.ASSISTANT:
            for call in message.tool_calls:
                pending[call.id] = call.name
        elif message.role == MessageRole.TOOL and message.tool_call_id in pending:
            sessions.record_tool_result(
                session_id,
                pending.pop(message.tool_call_id),
                success=not message.content.startswith("Error:"),
                summary=message.content,
            )
    sessions.add_conversation_message(
        session_id,
        "assistant",
        f"[{stage.value}] {result.iterations} iteration(s), {result.tool_call_count} tool call(s), "
        f"{len(result.content):,} chars",
    )


def _make_reprompt(agent: Agent, role_prompt: str, result: AgentResult, with_tools: bool):
    """Repair turn: same conversation, JSON only.

    Tools stay advertised exactly as in the stage run; providers reject a
    transcript holding tool calls and results when no tools are declared.
    """
    history: list[ChatMessage] = list(result.history[1:])  # drop the old system message

    async def reprompt(correction: str) -> str:
        nonlocal history
        repaired = await agent.execute(
            correction,
            role_prompt,
            history=history,
            with_env=False,
            json_output=True,
            with_tools=with_tools,
        )
        history = list(repaired.history[1:])
        return repaired.content

    return reprompt


async def run_json_stage(
    ctx: PipelineContext,
    repository_path: Path,
    stage: PipelineStage,
    prompt_key: str,
    schema: type[ModelT],
    values: dict[str, Any],
    *,
    session_id: Optional[str] = None,
    with_tools: bool = True,
    with_env: bool = True,
) -> ModelT:
    """Run a JSON-producing stage and validate the reply against schema.

    Raises:
        StageFailure: On agent exhaustion, unparseable JSON or schema mismatch
    """
    data = await run_json_stage_raw(
        ctx, repository_path, stage, prompt_key, values,
        session_id=session_id, with_tools=with_tools, with_env=with_env,
    )
    try:
        return schema.model_validate(data)
    except SchemaValidationError as e:
        raise StageFailure(stage.value, f"reply does not match {schema.__name__}: {e}") from e


async def run_json_stage_raw(
    ctx: PipelineContext,
    repository_path: Path,
    stage: PipelineStage,
    prompt_key: str,
    values: dict[str, Any],
    *,
    session_id: Optional[str] = None,
    with_tools: bool = True,
    with_env: bool = True,
) -> dict[str, Any]:
    role_prompt, action_prompt = ctx.prompts.render(prompt_key, **values)
    agent = ctx.new_agent(repository_path, label=stage.value)
    try:
        result = await agent.execute(
            action_prompt, role_prompt, with_env=with_env, json_output=True, with_tools=with_tools
        )
        if session_id:
            record_agent_activity(ctx.session_manager, session_id, stage, result)
        if not result.success:
            raise StageFailure(stage.value, result.error or "agent did not complete")
        return await extract_json(
            result.content,
            reprompt=_make_reprompt(agent, role_prompt, result, with_tools),
            label=stage.value,
        )
    except MalformedOutputError as e:
        raise StageFailure(stage.value, str(e)) from e
    finally:
        await agent.aclose()


async def run_planner(
    ctx: PipelineContext,
    repository_path: Path,
    values: dict[str, Any],
    session_id: Optional[str] = None,
) -> str:
    """Free-text documentation plan (tools on, continuation oracle decides when done)."""
    role_prompt, action_prompt = ctx.prompts.render("planner", **values)
    agent = ctx.new_agent(repository_path, label=PipelineStage.PLANNING.value)
    try:
        result = await agent.execute(action_prompt, role_prompt)
    finally:
        await agent.aclose()
    if session_id:
        record_agent_activity(ctx.session_manager, session_id, PipelineStage.PLANNING, result)
    if not result.success or not result.content.strip():
        raise StageFailure(PipelineStage.PLANNING.value, result.error or "planner returned no plan")
    return result.content


async def run_scheduler(
    ctx: PipelineContext,
    repository_path: Path,
    plan: str,
    features: CoreFeatures,
    session_id: Optional[str] = None,
) -> list[DocumentTask]:
    """Turn the plan into document tasks (JSON, no tools, no environment)."""
    feature_index = "\n".join(f"- {f.id}: {f.name}" for f in features.features) or "(none)"
    data = await run_json_stage_raw(
        ctx,
        repository_path,
        PipelineStage.SCHEDULING,
        "scheduler",
        {"plan": plan, "feature_index": feature_index},
        session_id=session_id,
        with_tools=False,
        with_env=False,
    )
    raw_tasks = data.get("document_tasks")
    if not isinstance(raw_tasks, list):
        raise StageFailure(PipelineStage.SCHEDULING.value, "reply has no document_tasks array")

    tasks = []
    for raw in raw_tasks:
        try:
            tasks.append(DocumentTask.model_validate(raw))
        except SchemaValidationError as e:
            logger.warning(f"[scheduling] Dropping malformed task {raw!r}: {e}")
    logger.info(f"[scheduling] {len(tasks)} document tasks scheduled")
    return tasks


def prepare_tasks(tasks: list[DocumentTask], features: CoreFeatures) -> list[DocumentTask]:
    """Final task list for the writer fan-out.

    - The Overview task always comes first (a scheduled task titled
      "Overview" is replaced by it)
    - featureId values that name no feature of this run are resolved by
      feature name, else cleared
    - Every feature not covered by a task gets a task of its own
    """
    by_id = {f.id: f for f in features.features}
    by_name = {f.name.strip().lower(): f for f in features.features}

    prepared = [OVERVIEW_TASK.model_copy()]
    covered: set[str] = set()

    for task in tasks:
        if task.title.strip().lower() == OVERVIEW_TASK.title.lower():
            continue
        feature_id = task.feature_id if task.feature_id in by_id else None
        if feature_id is None:
            match = by_name.get(task.title.strip().lower())
            feature_id = match.id if match else None
        if feature_id is not None and feature_id in covered:
            feature_id = None  # one feature doc per feature; extra tasks become general docs
        if feature_id is not None:
            covered.add(feature_id)
        prepared.append(task.model_copy(update={"feature_id": feature_id}))

    for feature in features.features:
        if feature.id not in covered:
            prepared.append(_task_for_feature(feature))

    return prepared


def _task_for_feature(feature: CoreFeature) -> DocumentTask:
    outline_parts = ["What the feature does and why it matters"]
    if feature.entry_points:
        outline_parts.append(f"Entry points: {', '.join(feature.entry_points)}")
    if feature.primary_modules:
        outline_parts.append(f"Modules involved: {', '.join(feature.primary_modules)}")
    if feature.key_symbols:
        outline_parts.append(f"Key symbols: {', '.join(feature.key_symbols)}")
    outline_parts.append("How a developer extends or debugs it")
    return DocumentTask(
        title=feature.name,
        goal=feature.why_core or f"Explain the {feature.name} feature",
        outline="; ".join(outline_parts),
        target_reader="Developers working on this feature",
        feature_id=feature.id,
    )
