import uuid
from enum import Enum
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# Fixed tag taxonomy; order matters for display only
TECHNICAL_TAGS = [
    "Frontend",
    "Backend",
    "Database",
    "Authentication",
    "DevOps",
    "Mobile",
    "Testing",
    "Design",
    "Security",
    "Data Science",
    "Machine Learning",
    "Infrastructure",
    "API",
    "UI/UX",
]


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class DeadlinePolicy(str, Enum):
    """How subtask deadlines are spread when subtasks are generated."""
    SEQUENTIAL = "sequential"
    RANDOM = "random"


# -------------------------
# Store records
# -------------------------
class User(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        name = self.user_metadata.get("full_name")
        if name:
            return name
        if self.email:
            return self.email.split("@")[0]
        return "Unknown"


class Team(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    # category -> field -> value(s); values are free-form strings
    tech_stack: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class TeamMember(BaseModel):
    team_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime = Field(default_factory=utcnow)


class TeamGoal(BaseModel):
    id: str = Field(default_factory=new_id)
    team_id: str
    goal_text: str
    created_by: str
    is_processed: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Task(BaseModel):
    id: str = Field(default_factory=new_id)
    team_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    position: int = 0
    deadline: Optional[datetime] = None
    assigned_to: Optional[str] = None
    tags: Optional[List[str]] = None
    created_at: datetime = Field(default_factory=utcnow)


class Subtask(BaseModel):
    id: str = Field(default_factory=new_id)
    task_id: str
    title: str
    description: Optional[str] = None
    is_completed: bool = False
    position: int = 0
    assigned_to: Optional[str] = None
    deadline: Optional[datetime] = None
    status: TaskStatus = TaskStatus.TODO
    priority: str = "medium"
    created_at: datetime = Field(default_factory=utcnow)


class TaskAssignment(BaseModel):
    id: str = Field(default_factory=new_id)
    task_id: str
    assigned_to: str
    assigned_by: str
    assigned_at: datetime = Field(default_factory=utcnow)


class SubtaskAssignment(BaseModel):
    id: str = Field(default_factory=new_id)
    subtask_id: str
    assigned_to: str
    assigned_by: str
    assigned_at: datetime = Field(default_factory=utcnow)


# -------------------------
# Model output shapes
# -------------------------
class GeneratedItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    description: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def _scalar_title(cls, v):
        # A bare number as title is still usable; lists and objects are not
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class GeneratedTask(GeneratedItem):
    estimated_days: Optional[int] = None

    @field_validator("estimated_days", mode="before")
    @classmethod
    def _coerce_days(cls, v):
        # The model sometimes answers "3" or "3 days"; anything else is dropped
        if v is None or isinstance(v, int):
            return v
        digits = "".join(ch for ch in str(v) if ch.isdigit())
        return int(digits) if digits else None


class GeneratedSubtask(GeneratedItem):
    pass


class StackSuggestion(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: str
    field: str
    value: Union[str, List[str]]
    name: Optional[str] = None
    rationale: str = ""


class ChatMessage(BaseModel):
    role: str
    content: str


# -------------------------
# Pydantic Input
# -------------------------
class GenerateTasksRequest(BaseModel):
    team_id: str
    goal: str

    @field_validator("goal")
    @classmethod
    def _goal_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("goal must not be empty")
        return v


class GenerateSubtasksRequest(BaseModel):
    task_id: str
    deadline_policy: Optional[DeadlinePolicy] = None


class AllocateTasksRequest(BaseModel):
    team_id: str


class AssignSubtasksRequest(BaseModel):
    task_id: str
    team_id: str


class AutoTagRequest(BaseModel):
    task_id: str
    title: str
    description: Optional[str] = ""
    team_id: Optional[str] = None


class RetagTeamRequest(BaseModel):
    team_id: str


class StackChatRequest(BaseModel):
    # Accept the camelCase names the chat widget sends
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation: List[ChatMessage] = Field(default_factory=list)
    current_stack: Optional[Dict[str, Any]] = Field(None, alias="currentStack")
    force_suggestions: bool = Field(False, alias="forceSuggestions")


class CreateSubtaskRequest(BaseModel):
    task_id: str
    title: str
    description: Optional[str] = None
    position: Optional[int] = 0


class UpdateSubtaskRequest(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    is_completed: Optional[bool] = None
    position: Optional[int] = None


class UpdateTaskStatusRequest(BaseModel):
    status: TaskStatus
    position: Optional[int] = None


Row = Dict[str, Any]
JSONValue = Union[Dict[str, Any], List[Any]]
