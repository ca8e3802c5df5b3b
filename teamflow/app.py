import asyncio
import logging
from typing import List, Dict, Any, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from . import __version__, config
from .allocation import allocate_tasks, allocate_subtasks
from .auth import authenticate, require_membership
from .errors import TeamflowError, NotFoundError, PersistenceError, ValidationError
from .llm import GeminiClient
from .models import (
    Row, User, Subtask, TaskStatus,
    GenerateTasksRequest, GenerateSubtasksRequest, AllocateTasksRequest, AssignSubtasksRequest,
    AutoTagRequest, RetagTeamRequest, StackChatRequest, CreateSubtaskRequest,
    UpdateSubtaskRequest, UpdateTaskStatusRequest,
)
from .orchestrator import (
    generate_task_events, guarded_task_events, generate_subtasks, framed_chat_events,
)
from .prompts import build_stack_chat_prompt
from .store import Store, SupabaseStore
from .tagging import tag_task, retag_team

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# -------------------------
# Dependencies
# -------------------------
def get_store(request: Request) -> Store:
    return request.app.state.store


def get_llm(request: Request):
    return request.app.state.llm


def current_user(authorization: Optional[str] = Header(None),
                 store: Store = Depends(get_store)) -> User:
    return authenticate(authorization, store)


def _task_or_404(store: Store, task_id: str) -> Row:
    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


def _with_assigned_users(store: Store, rows: List[Row]) -> List[Row]:
    if not any(r.get("assigned_to") for r in rows):
        return rows
    users = {u.id: u for u in store.list_users()}
    out = []
    for r in rows:
        user = users.get(r.get("assigned_to")) if r.get("assigned_to") else None
        if user:
            r = {**r, "assigned_user": {"id": user.id, "email": user.email or "Unknown",
                                        "raw_user_meta_data": user.user_metadata}}
        out.append(r)
    return out


# -------------------------
# Error rendering
# -------------------------
def _install_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(TeamflowError)
    async def teamflow_error(request: Request, exc: TeamflowError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_error(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in err["loc"][1:]) or "body" for err in exc.errors()})
        return JSONResponse(status_code=400, content={"error": f"Invalid or missing fields: {', '.join(fields)}"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


# -------------------------
# API Endpoints
# -------------------------
def create_app(store: Optional[Store] = None, llm=None) -> FastAPI:
    app = FastAPI(title="Teamflow Task Generator", version=__version__)
    app.state.store = store or SupabaseStore()
    app.state.llm = llm or GeminiClient()
    _install_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__, "model": getattr(app.state.llm, "model_name", None)}

    @app.post("/api/generate-tasks")
    async def generate_tasks(body: GenerateTasksRequest, user: User = Depends(current_user),
                             store: Store = Depends(get_store), llm=Depends(get_llm)):
        """
        Decompose a team goal into tasks, streaming progress as server-sent events.

        The team must exist and the caller must belong to it; both are checked
        before the stream opens so failures come back as plain JSON errors.
        """
        team = await asyncio.to_thread(store.get_team, body.team_id)
        if team is None:
            raise NotFoundError("Team not found")
        await asyncio.to_thread(require_membership, store, body.team_id, user)

        events = generate_task_events(store, llm, team, body.goal, user)
        return StreamingResponse(guarded_task_events(events), media_type="text/event-stream",
                                 headers=SSE_HEADERS)

    @app.post("/api/generate-subtasks")
    async def generate_subtasks_endpoint(body: GenerateSubtasksRequest, user: User = Depends(current_user),
                                         store: Store = Depends(get_store), llm=Depends(get_llm)):
        task = await asyncio.to_thread(_task_or_404, store, body.task_id)
        await asyncio.to_thread(require_membership, store, task["team_id"], user)

        policy = body.deadline_policy or config.SUBTASK_DEADLINE_POLICY
        created = await generate_subtasks(store, llm, task, user, policy=policy)
        return {
            "subtasks": created,
            "message": f"Generated {len(created)} subtasks and assigned them to team members",
        }

    @app.post("/api/allocate-tasks")
    def allocate_tasks_endpoint(body: AllocateTasksRequest, user: User = Depends(current_user),
                                store: Store = Depends(get_store)):
        require_membership(store, body.team_id, user)
        return allocate_tasks(store, body.team_id, user).to_dict("allocatedTasks")

    @app.post("/api/assign-subtasks")
    def assign_subtasks_endpoint(body: AssignSubtasksRequest, user: User = Depends(current_user),
                                 store: Store = Depends(get_store)):
        require_membership(store, body.team_id, user)
        task = _task_or_404(store, body.task_id)
        if task["team_id"] != body.team_id:
            raise NotFoundError("Task not found")
        return allocate_subtasks(store, body.task_id, body.team_id, user).to_dict("allocatedSubtasks")

    @app.post("/api/auto-tag-tasks")
    async def auto_tag_task(body: AutoTagRequest, user: User = Depends(current_user),
                            store: Store = Depends(get_store), llm=Depends(get_llm)):
        task = await asyncio.to_thread(_task_or_404, store, body.task_id)
        await asyncio.to_thread(require_membership, store, body.team_id or task["team_id"], user)
        try:
            updated = await tag_task(store, llm, body.task_id, body.title, body.description)
        except PersistenceError as e:
            logger.error(f"❌ Error updating task tags: {e}")
            raise PersistenceError("Failed to update task tags") from e
        return {"success": True, "task_id": body.task_id, "tags": updated.get("tags"), "updated_task": updated}

    @app.put("/api/auto-tag-tasks")
    async def retag_all_tasks(body: RetagTeamRequest, user: User = Depends(current_user),
                              store: Store = Depends(get_store), llm=Depends(get_llm)):
        await asyncio.to_thread(require_membership, store, body.team_id, user)
        result = await retag_team(store, llm, body.team_id)
        return result.to_dict()

    @app.post("/api/ai-stack-chat")
    async def stack_chat(body: StackChatRequest, user: User = Depends(current_user), llm=Depends(get_llm)):
        prompt = build_stack_chat_prompt(body.message, body.conversation, body.current_stack,
                                         body.force_suggestions)
        return StreamingResponse(framed_chat_events(llm, prompt),
                                 media_type="text/event-stream; charset=utf-8", headers=SSE_HEADERS)

    @app.get("/api/team-members")
    def team_members(team_id: str = Query(...), user: User = Depends(current_user),
                     store: Store = Depends(get_store)):
        require_membership(store, team_id, user)
        users = {u.id: u for u in store.list_users()}
        members: List[Dict[str, Any]] = []
        for m in store.list_members(team_id):
            profile = users.get(m.user_id)
            members.append({
                "id": m.user_id,
                "email": (profile.email if profile else None) or "Unknown",
                "name": profile.display_name if profile else "Unknown",
                "field": (profile.user_metadata.get("field") if profile else None) or "Not specified",
                "role": m.role.value,
                "joined_at": m.joined_at.isoformat(),
            })
        return {"members": members}

    @app.get("/api/subtasks")
    def list_subtasks(task_id: str = Query(...), user: User = Depends(current_user),
                      store: Store = Depends(get_store)):
        task = _task_or_404(store, task_id)
        require_membership(store, task["team_id"], user)
        return {"subtasks": store.list_subtasks(task_id)}

    @app.post("/api/subtasks", status_code=201)
    def create_subtask(body: CreateSubtaskRequest, user: User = Depends(current_user),
                       store: Store = Depends(get_store)):
        task = _task_or_404(store, body.task_id)
        require_membership(store, task["team_id"], user)
        subtask = store.insert_subtask(Subtask(
            task_id=body.task_id, title=body.title, description=body.description,
            position=body.position or 0,
        ))
        return {"subtask": subtask}

    @app.put("/api/subtasks")
    def update_subtask(body: UpdateSubtaskRequest, user: User = Depends(current_user),
                       store: Store = Depends(get_store)):
        subtask = store.get_subtask(body.id)
        if subtask is None:
            raise NotFoundError("Subtask not found")
        task = _task_or_404(store, subtask["task_id"])
        require_membership(store, task["team_id"], user)
        fields = body.model_dump(exclude={"id"}, exclude_none=True)
        if not fields:
            return {"subtask": subtask}
        return {"subtask": store.update_subtask(body.id, fields)}

    @app.delete("/api/subtasks")
    def delete_subtask(id: str = Query(...), user: User = Depends(current_user),
                       store: Store = Depends(get_store)):
        subtask = store.get_subtask(id)
        if subtask is None:
            raise NotFoundError("Subtask not found")
        task = _task_or_404(store, subtask["task_id"])
        require_membership(store, task["team_id"], user)
        store.delete_subtask(id)
        return {"success": True}

    @app.get("/api/team-subtasks")
    def team_subtasks(team_id: str = Query(...), user: User = Depends(current_user),
                      store: Store = Depends(get_store)):
        require_membership(store, team_id, user)
        return {"subtasks": _with_assigned_users(store, store.list_team_subtasks(team_id))}

    @app.patch("/api/tasks/{task_id}/status")
    def update_task_status(task_id: str, body: UpdateTaskStatusRequest, user: User = Depends(current_user),
                           store: Store = Depends(get_store)):
        """Move a task between board columns; completion requires every subtask done."""
        task = _task_or_404(store, task_id)
        require_membership(store, task["team_id"], user)
        if body.status == TaskStatus.COMPLETED:
            open_subtasks = [s for s in store.list_subtasks(task_id) if not s.get("is_completed")]
            if open_subtasks:
                raise ValidationError("Cannot move to completed: not all subtasks are completed")
        fields: Dict[str, Any] = {"status": body.status.value}
        if body.position is not None:
            fields["position"] = body.position
        return {"task": store.update_task(task_id, fields)}

    return app
