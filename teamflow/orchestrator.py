"""
Generation pipelines.

``generate_task_events`` drives goal -> persisted tasks and yields progress
events, one dict per event, each tagged with a ``status``:

    generating -> parsing -> creating -> (creating_task -> task_created)* -> complete

or ``error`` as the last event. Work is strictly sequential; nothing is
cancelled when the client goes away. Per task the pipeline walks
created -> tagged and logs each step, so a run that dies half way can be
reconstructed from the logs. A batch that cannot be parsed creates nothing;
a single insert that fails is skipped; a tagging failure leaves the task untagged.

``stack_chat_events`` forwards a chat completion as ``chunk`` events and then
emits the extracted ``suggestions`` and the cleaned ``done`` text.
"""
import json
import random
import asyncio
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, AsyncIterator, Tuple
from pydantic import ValidationError as SchemaError

from . import config
from .allocation import RoundRobin, sort_roster, subtask_deadline
from .errors import TeamflowError, PersistenceError, UpstreamGenerationError
from .models import (
    Row, User, Task, Subtask, TeamGoal, TaskStatus, DeadlinePolicy,
    GeneratedTask, GeneratedSubtask, SubtaskAssignment,
)
from .parsing import parse_json_array, extract_suggestions
from .prompts import build_task_prompt, build_subtask_prompt
from .store import Store
from .tagging import generate_task_tags

logger = logging.getLogger(__name__)


# -------------------------
# Server-sent event framing
# -------------------------
def sse_data(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def sse_event(name: str, payload: Dict[str, Any]) -> str:
    return f"event: {name}\ndata: {json.dumps(payload, default=str)}\n\n"


def _validated(items: List[Any], model, what: str) -> List[Any]:
    out = []
    for i, item in enumerate(items):
        if not isinstance(item, dict) or not item.get("title"):
            logger.warning(f"⚠️ Dropping generated {what} #{i + 1}: no title")
            continue
        try:
            out.append(model.model_validate(item))
        except SchemaError as e:
            logger.warning(f"⚠️ Dropping generated {what} #{i + 1}: {e.error_count()} invalid field(s)")
    return out


async def _collect(llm, prompt: str) -> str:
    parts = []
    async for chunk in llm.stream(prompt):
        parts.append(chunk)
    return "".join(parts)


# -------------------------
# Goal -> tasks
# -------------------------
async def generate_task_events(store: Store, llm, team: Row, goal: str, user: User,
                               delay: Optional[float] = None) -> AsyncIterator[Dict[str, Any]]:
    team_id = team["id"]
    delay = config.TASK_CREATE_DELAY if delay is None else delay

    try:
        prompt = build_task_prompt(goal, team.get("tech_stack"))
        yield {"status": "generating", "message": "AI is analyzing your goal and generating tasks..."}
        text = await _collect(llm, prompt)
    except TeamflowError as e:
        logger.error(f"❌ Task generation failed for team {team_id}: {e}")
        yield {"status": "error", "error": "Failed to generate tasks", "message": str(e)}
        return

    yield {"status": "parsing", "message": "Processing generated tasks..."}
    try:
        generated = _validated(parse_json_array(text, "tasks"), GeneratedTask, "task")
    except UpstreamGenerationError as e:
        yield {"status": "error", "error": "Failed to parse AI response", "message": str(e)}
        return

    total = len(generated)
    yield {"status": "creating", "message": f"Creating {total} tasks...", "totalTasks": total}

    created: List[Row] = []
    for i, item in enumerate(generated):
        yield {
            "status": "creating_task",
            "message": f"Creating task: {item.title}",
            "currentTask": i + 1,
            "totalTasks": total,
        }
        try:
            row = await asyncio.to_thread(store.insert_task, Task(
                team_id=team_id, title=item.title, description=item.description,
                status=TaskStatus.TODO, position=i,
            ))
        except PersistenceError as e:
            logger.error(f"❌ Skipping task {i + 1}/{total} '{item.title}': {e}")
            continue
        logger.info(f"📝 task {row['id']} state=created ({i + 1}/{total})")

        try:
            tags = await generate_task_tags(llm, row["title"], row.get("description"))
            row = await asyncio.to_thread(store.update_task, row["id"], {"tags": tags})
            logger.info(f"🏷️ task {row['id']} state=tagged {tags}")
        except TeamflowError as e:
            logger.warning(f"⚠️ task {row['id']} left untagged: {e}")

        created.append(row)
        yield {"status": "task_created", "task": row, "currentTask": i + 1, "totalTasks": total}
        if delay > 0:
            await asyncio.sleep(delay)

    try:
        await asyncio.to_thread(store.insert_goal, TeamGoal(
            team_id=team_id, goal_text=goal, created_by=user.id, is_processed=True,
        ))
    except PersistenceError as e:
        logger.error(f"❌ Could not record goal for team {team_id}: {e}")

    logger.info(f"✅ Created {len(created)}/{total} tasks for team {team_id}")
    yield {"status": "complete", "message": "All tasks created successfully!", "tasks": created}


async def guarded_task_events(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    """Frame task events as SSE; an unexpected failure still ends the stream with an error event."""
    try:
        async for event in events:
            yield sse_data(event)
    except Exception:
        logger.exception("❌ Unexpected failure in task generation stream")
        yield sse_data({"status": "error", "error": "Failed to generate tasks"})


# -------------------------
# Task -> subtasks
# -------------------------
async def generate_subtasks(store: Store, llm, task: Row, assigned_by: User,
                            policy: DeadlinePolicy = DeadlinePolicy.SEQUENTIAL,
                            now: Optional[datetime] = None,
                            rnd: Optional[random.Random] = None) -> List[Row]:
    """Break a task into subtasks, assign them round-robin and schedule their deadlines."""
    text = await llm.generate(build_subtask_prompt(task["title"], task.get("description")))
    generated = _validated(parse_json_array(text, "subtasks"), GeneratedSubtask, "subtask")

    members = sort_roster(await asyncio.to_thread(store.list_members, task["team_id"]))
    rr = RoundRobin(members) if members else None
    rnd = rnd or random.Random(config.RANDOM_SEED)

    created: List[Row] = []
    for i, item in enumerate(generated):
        idx, assignee = rr.pick() if rr else (None, None)
        deadline = subtask_deadline(policy, i, item.title, item.description, now, rnd)
        try:
            row = await asyncio.to_thread(store.insert_subtask, Subtask(
                task_id=task["id"], title=item.title, description=item.description, position=i,
                assigned_to=assignee.user_id if assignee else None, deadline=deadline,
                status=TaskStatus.TODO, priority="medium",
            ))
        except PersistenceError as e:
            logger.error(f"❌ Skipping subtask {i + 1} '{item.title}': {e}")
            continue

        if assignee:
            rr.mark(idx)
            try:
                await asyncio.to_thread(store.insert_subtask_assignment, SubtaskAssignment(
                    subtask_id=row["id"], assigned_to=assignee.user_id, assigned_by=assigned_by.id,
                ))
            except PersistenceError as e:
                logger.warning(f"⚠️ Assignment audit row for subtask {row['id']} not written: {e}")
        created.append(row)

    logger.info(f"✅ Generated {len(created)} subtasks for task {task['id']} ({policy.value} deadlines)")
    return created


# -------------------------
# Stack advisory chat
# -------------------------
async def stack_chat_events(llm, prompt: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
    full = ""
    try:
        async for text in llm.stream(prompt):
            full += text
            yield "chunk", {"text": text}
    except Exception as e:
        logger.error(f"❌ Stack chat stream failed: {e}")
        yield "error", {"message": "Streaming error"}
        return

    suggestions, clean = extract_suggestions(full)
    yield "suggestions", {"suggestions": suggestions}
    yield "done", {"final": clean}


async def framed_chat_events(llm, prompt: str) -> AsyncIterator[str]:
    async for name, payload in stack_chat_events(llm, prompt):
        yield sse_event(name, payload)
