"""
Persistence gateway.

The service never talks to the database directly: everything goes through a
``Store``. ``SupabaseStore`` speaks PostgREST/GoTrue over HTTP with the
service-role key; ``InMemoryStore`` keeps the same tables in dicts and is what
the tests and local runs use.

Rows are plain JSON-ready dicts (timestamps as ISO strings), exactly what the
REST API returns. Store failures raise PersistenceError; a missing single row
is ``None``.
"""
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Set

import requests

from . import config
from .errors import PersistenceError
from .models import (
    Row, User, TeamMember, TeamGoal, Task, Subtask, TaskAssignment, SubtaskAssignment,
)

logger = logging.getLogger(__name__)


class Store:
    """Interface the pipeline reads and writes through."""

    # users / auth
    def get_user_by_token(self, token: str) -> Optional[User]:
        raise NotImplementedError

    def list_users(self) -> List[User]:
        raise NotImplementedError

    # teams
    def get_team(self, team_id: str) -> Optional[Row]:
        raise NotImplementedError

    def get_membership(self, team_id: str, user_id: str) -> Optional[TeamMember]:
        raise NotImplementedError

    def list_members(self, team_id: str) -> List[TeamMember]:
        raise NotImplementedError

    def insert_goal(self, goal: TeamGoal) -> Row:
        raise NotImplementedError

    # tasks
    def get_task(self, task_id: str) -> Optional[Row]:
        raise NotImplementedError

    def list_tasks(self, team_id: str, unassigned_only: bool = False) -> List[Row]:
        raise NotImplementedError

    def insert_task(self, task: Task) -> Row:
        raise NotImplementedError

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Row:
        raise NotImplementedError

    def insert_task_assignment(self, assignment: TaskAssignment) -> Row:
        raise NotImplementedError

    # subtasks
    def get_subtask(self, subtask_id: str) -> Optional[Row]:
        raise NotImplementedError

    def list_subtasks(self, task_id: str, unassigned_only: bool = False) -> List[Row]:
        raise NotImplementedError

    def list_team_subtasks(self, team_id: str) -> List[Row]:
        """Subtasks with a deadline across the team's tasks, earliest deadline first."""
        raise NotImplementedError

    def insert_subtask(self, subtask: Subtask) -> Row:
        raise NotImplementedError

    def update_subtask(self, subtask_id: str, fields: Dict[str, Any]) -> Row:
        raise NotImplementedError

    def delete_subtask(self, subtask_id: str) -> None:
        raise NotImplementedError

    def insert_subtask_assignment(self, assignment: SubtaskAssignment) -> Row:
        raise NotImplementedError


def _jsonable(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else getattr(v, "value", v)) for k, v in fields.items()}


# -------------------------
# In-memory store
# -------------------------
class InMemoryStore(Store):
    """
    Dict-backed store with the same semantics as the REST one.

    ``fail_titles`` makes inserts of rows with those titles fail and
    ``fail_ids`` makes updates of those row ids fail, to exercise the
    partial-success paths.
    """

    TABLES = ("teams", "team_members", "team_goals", "tasks", "subtasks",
              "task_assignments", "subtask_assignments")

    def __init__(self):
        self.tables: Dict[str, Dict[str, Row]] = {name: {} for name in self.TABLES}
        self.users: Dict[str, User] = {}
        self.tokens: Dict[str, str] = {}
        self.members: List[TeamMember] = []
        self.fail_titles: Set[str] = set()
        self.fail_ids: Set[str] = set()
        self.writes = 0

    # seeding helpers
    def add_user(self, user: User, token: Optional[str] = None) -> User:
        self.users[user.id] = user
        if token:
            self.tokens[token] = user.id
        return user

    def add_team(self, team_id: str, name: str = "Team", tech_stack: Optional[Dict[str, Any]] = None,
                 created_by: Optional[str] = None) -> Row:
        row = {"id": team_id, "name": name, "description": None, "tech_stack": tech_stack,
               "created_by": created_by, "created_at": datetime.now().isoformat()}
        self.tables["teams"][team_id] = row
        return row

    def add_member(self, member: TeamMember) -> TeamMember:
        if self.get_membership(member.team_id, member.user_id):
            raise PersistenceError("duplicate key value violates unique constraint (team_id, user_id)")
        self.members.append(member)
        return member

    def _insert(self, table: str, row: Row) -> Row:
        if row.get("title") in self.fail_titles:
            raise PersistenceError(f"insert into {table} rejected")
        self.tables[table][row["id"]] = row
        self.writes += 1
        return dict(row)

    def _update(self, table: str, row_id: str, fields: Dict[str, Any]) -> Row:
        if row_id in self.fail_ids:
            raise PersistenceError(f"update of {table}.{row_id} rejected")
        row = self.tables[table].get(row_id)
        if row is None:
            raise PersistenceError(f"{table}.{row_id} does not exist")
        row.update(_jsonable(fields))
        self.writes += 1
        return dict(row)

    def get_user_by_token(self, token: str) -> Optional[User]:
        user_id = self.tokens.get(token)
        return self.users.get(user_id) if user_id else None

    def list_users(self) -> List[User]:
        return list(self.users.values())

    def get_team(self, team_id: str) -> Optional[Row]:
        row = self.tables["teams"].get(team_id)
        return dict(row) if row else None

    def get_membership(self, team_id: str, user_id: str) -> Optional[TeamMember]:
        return next((m for m in self.members if m.team_id == team_id and m.user_id == user_id), None)

    def list_members(self, team_id: str) -> List[TeamMember]:
        return [m for m in self.members if m.team_id == team_id]

    def insert_goal(self, goal: TeamGoal) -> Row:
        return self._insert("team_goals", goal.model_dump(mode="json"))

    def get_task(self, task_id: str) -> Optional[Row]:
        row = self.tables["tasks"].get(task_id)
        return dict(row) if row else None

    def list_tasks(self, team_id: str, unassigned_only: bool = False) -> List[Row]:
        rows = [dict(r) for r in self.tables["tasks"].values() if r["team_id"] == team_id]
        if unassigned_only:
            rows = [r for r in rows if r.get("assigned_to") is None]
        return sorted(rows, key=lambda r: r.get("position") or 0)

    def insert_task(self, task: Task) -> Row:
        return self._insert("tasks", task.model_dump(mode="json"))

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Row:
        return self._update("tasks", task_id, fields)

    def insert_task_assignment(self, assignment: TaskAssignment) -> Row:
        return self._insert("task_assignments", assignment.model_dump(mode="json"))

    def get_subtask(self, subtask_id: str) -> Optional[Row]:
        row = self.tables["subtasks"].get(subtask_id)
        return dict(row) if row else None

    def list_subtasks(self, task_id: str, unassigned_only: bool = False) -> List[Row]:
        rows = [dict(r) for r in self.tables["subtasks"].values() if r["task_id"] == task_id]
        if unassigned_only:
            rows = [r for r in rows if r.get("assigned_to") is None]
        return sorted(rows, key=lambda r: r.get("position") or 0)

    def list_team_subtasks(self, team_id: str) -> List[Row]:
        tasks = {tid: t for tid, t in self.tables["tasks"].items() if t["team_id"] == team_id}
        rows = []
        for s in self.tables["subtasks"].values():
            task = tasks.get(s["task_id"])
            if task is None or not s.get("deadline"):
                continue
            rows.append({**s, "tasks": {"id": task["id"], "title": task["title"], "team_id": team_id}})
        return sorted(rows, key=lambda r: r["deadline"])

    def insert_subtask(self, subtask: Subtask) -> Row:
        return self._insert("subtasks", subtask.model_dump(mode="json"))

    def update_subtask(self, subtask_id: str, fields: Dict[str, Any]) -> Row:
        return self._update("subtasks", subtask_id, fields)

    def delete_subtask(self, subtask_id: str) -> None:
        if self.tables["subtasks"].pop(subtask_id, None) is None:
            raise PersistenceError(f"subtasks.{subtask_id} does not exist")
        self.writes += 1

    def insert_subtask_assignment(self, assignment: SubtaskAssignment) -> Row:
        return self._insert("subtask_assignments", assignment.model_dump(mode="json"))


# -------------------------
# Supabase (PostgREST + GoTrue) store
# -------------------------
class SupabaseStore(Store):
    """Store backed by a Supabase project, using the service-role key."""

    def __init__(self, url: Optional[str] = None, service_key: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.url = (url or config.SUPABASE_URL).rstrip("/")
        self.service_key = service_key or config.SUPABASE_SERVICE_ROLE_KEY
        self.timeout = timeout or config.STORE_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, params: Optional[Dict[str, str]] = None,
                 json_body: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self.session.request(
                method, f"{self.url}{path}", params=params, json=json_body,
                headers=headers, timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"❌ Store request {method} {path} failed: {e}")
            raise PersistenceError(f"Store request failed: {method} {path}") from e
        if not response.content:
            return None
        return response.json()

    def _select(self, table: str, params: Dict[str, str]) -> List[Row]:
        return self._request("GET", f"/rest/v1/{table}", params={"select": "*", **params}) or []

    def _select_one(self, table: str, params: Dict[str, str]) -> Optional[Row]:
        rows = self._select(table, {**params, "limit": "1"})
        return rows[0] if rows else None

    def _write(self, method: str, table: str, body: Dict[str, Any],
               params: Optional[Dict[str, str]] = None) -> Row:
        rows = self._request(method, f"/rest/v1/{table}", params=params, json_body=_jsonable(body),
                             headers={"Prefer": "return=representation"})
        if not rows:
            raise PersistenceError(f"{method} on {table} returned no row")
        return rows[0]

    @staticmethod
    def _user(data: Dict[str, Any]) -> User:
        return User(id=data["id"], email=data.get("email"), user_metadata=data.get("user_metadata") or {})

    def get_user_by_token(self, token: str) -> Optional[User]:
        try:
            response = self.session.get(
                f"{self.url}/auth/v1/user",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PersistenceError("Auth provider unreachable") from e
        if response.status_code in (401, 403):
            return None
        if not response.ok:
            raise PersistenceError(f"Auth provider returned {response.status_code}")
        return self._user(response.json())

    def list_users(self) -> List[User]:
        data = self._request("GET", "/auth/v1/admin/users", params={"per_page": "1000"}) or {}
        return [self._user(u) for u in data.get("users", [])]

    def get_team(self, team_id: str) -> Optional[Row]:
        return self._select_one("teams", {"id": f"eq.{team_id}"})

    def get_membership(self, team_id: str, user_id: str) -> Optional[TeamMember]:
        row = self._select_one("team_members", {"team_id": f"eq.{team_id}", "user_id": f"eq.{user_id}"})
        return TeamMember.model_validate(row) if row else None

    def list_members(self, team_id: str) -> List[TeamMember]:
        return [TeamMember.model_validate(r) for r in self._select("team_members", {"team_id": f"eq.{team_id}"})]

    def insert_goal(self, goal: TeamGoal) -> Row:
        return self._write("POST", "team_goals", goal.model_dump(exclude={"id", "created_at"}))

    def get_task(self, task_id: str) -> Optional[Row]:
        return self._select_one("tasks", {"id": f"eq.{task_id}"})

    def list_tasks(self, team_id: str, unassigned_only: bool = False) -> List[Row]:
        params = {"team_id": f"eq.{team_id}", "order": "position.asc"}
        if unassigned_only:
            params["assigned_to"] = "is.null"
        return self._select("tasks", params)

    def insert_task(self, task: Task) -> Row:
        return self._write("POST", "tasks", task.model_dump(exclude={"id", "created_at"}, exclude_none=True))

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Row:
        return self._write("PATCH", "tasks", fields, params={"id": f"eq.{task_id}"})

    def insert_task_assignment(self, assignment: TaskAssignment) -> Row:
        return self._write("POST", "task_assignments", assignment.model_dump(exclude={"id", "assigned_at"}))

    def get_subtask(self, subtask_id: str) -> Optional[Row]:
        return self._select_one("subtasks", {"id": f"eq.{subtask_id}"})

    def list_subtasks(self, task_id: str, unassigned_only: bool = False) -> List[Row]:
        params = {"task_id": f"eq.{task_id}", "order": "position.asc"}
        if unassigned_only:
            params["assigned_to"] = "is.null"
        return self._select("subtasks", params)

    def list_team_subtasks(self, team_id: str) -> List[Row]:
        return self._request("GET", "/rest/v1/subtasks", params={
            "select": "*,tasks!inner(id,title,team_id)",
            "tasks.team_id": f"eq.{team_id}",
            "deadline": "not.is.null",
            "order": "deadline.asc",
        }) or []

    def insert_subtask(self, subtask: Subtask) -> Row:
        return self._write("POST", "subtasks", subtask.model_dump(exclude={"id", "created_at"}, exclude_none=True))

    def update_subtask(self, subtask_id: str, fields: Dict[str, Any]) -> Row:
        return self._write("PATCH", "subtasks", fields, params={"id": f"eq.{subtask_id}"})

    def delete_subtask(self, subtask_id: str) -> None:
        self._request("DELETE", "/rest/v1/subtasks", params={"id": f"eq.{subtask_id}"})

    def insert_subtask_assignment(self, assignment: SubtaskAssignment) -> Row:
        return self._write("POST", "subtask_assignments", assignment.model_dump(exclude={"id", "assigned_at"}))
