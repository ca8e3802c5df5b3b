"""
Round-robin allocation of unassigned work and deadline scheduling.

Each pass keeps a per-member counter starting at zero and always hands the
next item to the least-loaded member, lowest roster index on ties, so after
any number of items the spread between members is at most one.

Items are processed in ascending ``position`` order. A store failure on one
item is logged and that item skipped; the rest of the batch continues and the
result reports how many went through.
"""
import random
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Tuple

from .errors import PersistenceError, ValidationError
from .models import (
    Row, User, TeamMember, DeadlinePolicy, TaskAssignment, SubtaskAssignment,
)
from .store import Store

logger = logging.getLogger(__name__)

TASK_BASE_DEADLINE_DAYS = 7
TASK_MAX_DEADLINE_DAYS = 14
COMPLEX_DESCRIPTION_LENGTH = 150
COMPLEX_TITLE_WORDS = ("research", "design", "implement")
RANDOM_DEADLINE_RANGE = (3, 7)


class RoundRobin:
    """Least-loaded picker over a fixed roster."""

    def __init__(self, members: List[TeamMember]):
        self.members = list(members)
        self.counts = [0] * len(self.members)

    def pick(self) -> Tuple[int, TeamMember]:
        if not self.members:
            raise ValidationError("No team members found")
        idx = self.counts.index(min(self.counts))
        return idx, self.members[idx]

    def mark(self, idx: int) -> None:
        self.counts[idx] += 1



def sort_roster(members: List[TeamMember]) -> List[TeamMember]:
    """Stable roster order (join time, then user id); listing order is not guaranteed."""
    return sorted(members, key=lambda m: (m.joined_at, m.user_id))


# -------------------------
# Deadlines
# -------------------------
def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def task_deadline(i: int, now: Optional[datetime] = None) -> datetime:
    """7 days out for the first two items, one more day per pair, capped at 14."""
    days = min(TASK_BASE_DEADLINE_DAYS + i // 2, TASK_MAX_DEADLINE_DAYS)
    return _now(now) + timedelta(days=days)


def is_complex_subtask(title: str, description: Optional[str]) -> bool:
    if len(description or "") > COMPLEX_DESCRIPTION_LENGTH:
        return True
    lowered = (title or "").lower()
    return any(word in lowered for word in COMPLEX_TITLE_WORDS)


def sequential_subtask_deadline(i: int, title: str, description: Optional[str],
                                now: Optional[datetime] = None) -> datetime:
    step = 2 if is_complex_subtask(title, description) else 1
    return _now(now) + timedelta(days=1 + i * step)


def random_subtask_deadline(rnd: random.Random, now: Optional[datetime] = None) -> datetime:
    return _now(now) + timedelta(days=rnd.randint(*RANDOM_DEADLINE_RANGE))


def subtask_deadline(policy: DeadlinePolicy, i: int, title: str, description: Optional[str],
                     now: Optional[datetime] = None, rnd: Optional[random.Random] = None) -> datetime:
    if policy == DeadlinePolicy.RANDOM:
        return random_subtask_deadline(rnd or random.Random(), now)
    return sequential_subtask_deadline(i, title, description, now)


# -------------------------
# Bulk allocation
# -------------------------
@dataclass
class AllocationResult:
    message: str
    allocated: List[Row] = field(default_factory=list)
    errors: int = 0

    def to_dict(self, key: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message}
        if self.allocated or self.errors:
            body[key] = self.allocated
            body["errors"] = self.errors
        return body


def _assigned_user(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "email": user.email, "name": user.display_name,
            "raw_user_meta_data": user.user_metadata}


def allocate_tasks(store: Store, team_id: str, assigned_by: User,
                   now: Optional[datetime] = None) -> AllocationResult:
    """Assign every unassigned task of a team and give it a deadline."""
    tasks = store.list_tasks(team_id, unassigned_only=True)
    if not tasks:
        return AllocationResult(message="No unassigned tasks found")

    members = sort_roster(store.list_members(team_id))
    if not members:
        raise ValidationError("No team members found")

    users = {u.id: u for u in store.list_users()}
    rr = RoundRobin(members)
    now = _now(now)
    result = AllocationResult(message="")

    for i, task in enumerate(tasks):
        idx, assignee = rr.pick()
        deadline = task_deadline(i, now)
        try:
            updated = store.update_task(task["id"], {
                "assigned_to": assignee.user_id,
                "deadline": deadline,
            })
        except PersistenceError as e:
            logger.error(f"❌ Could not assign task {task['id']}: {e}")
            result.errors += 1
            continue
        rr.mark(idx)

        try:
            store.insert_task_assignment(TaskAssignment(
                task_id=task["id"], assigned_to=assignee.user_id, assigned_by=assigned_by.id,
            ))
        except PersistenceError as e:
            logger.warning(f"⚠️ Assignment audit row for task {task['id']} not written: {e}")

        updated["assigned_user"] = _assigned_user(users.get(assignee.user_id))
        result.allocated.append(updated)
        logger.info(f"✨ Assigned '{task.get('title')}' → {assignee.user_id} (due {deadline.date()})")

    result.message = f"Successfully allocated {len(result.allocated)} tasks"
    return result


def allocate_subtasks(store: Store, task_id: str, team_id: str, assigned_by: User) -> AllocationResult:
    """Assign every unassigned subtask of a task across the team; deadlines are left as they are."""
    subtasks = store.list_subtasks(task_id, unassigned_only=True)
    if not subtasks:
        return AllocationResult(message="No unassigned subtasks found")

    members = sort_roster(store.list_members(team_id))
    if not members:
        raise ValidationError("No team members found")

    rr = RoundRobin(members)
    result = AllocationResult(message="")

    for subtask in subtasks:
        idx, assignee = rr.pick()
        try:
            updated = store.update_subtask(subtask["id"], {"assigned_to": assignee.user_id})
        except PersistenceError as e:
            logger.error(f"❌ Could not assign subtask {subtask['id']}: {e}")
            result.errors += 1
            continue
        rr.mark(idx)

        try:
            store.insert_subtask_assignment(SubtaskAssignment(
                subtask_id=subtask["id"], assigned_to=assignee.user_id, assigned_by=assigned_by.id,
            ))
        except PersistenceError as e:
            logger.warning(f"⚠️ Assignment audit row for subtask {subtask['id']} not written: {e}")

        result.allocated.append(updated)

    result.message = f"Successfully allocated {len(result.allocated)} subtasks"
    return result
