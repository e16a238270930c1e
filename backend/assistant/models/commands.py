"""Command models - structured actions embedded in model replies."""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.assistant.models.context import TaskPriority

DEFAULT_TASK_DESCRIPTION = "Task assigned via chat"


class TaskAssignmentCommand(BaseModel):
    """`task_assignment` command payload.

    Field aliases match the JSON the model is instructed to emit.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["task_assignment"] = "task_assignment"
    title: str = Field(..., min_length=1, max_length=500)
    description: str = DEFAULT_TASK_DESCRIPTION
    recipients: list[str] = Field(default_factory=list, alias="assignedTo")
    assign_to_all_members: bool = Field(False, alias="assignToAllMembers")
    assign_to_role: str | None = Field(None, alias="assignToRole")
    due_date: date | None = Field(None, alias="dueDate")
    priority: TaskPriority = "medium"
    group_id: UUID | None = Field(None, alias="groupId")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v: object) -> object:
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_TASK_DESCRIPTION
        return v

    @field_validator("recipients", mode="before")
    @classmethod
    def coerce_recipients(cls, v: object) -> object:
        """Accept a single string or null as well as a list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("assign_to_role", mode="before")
    @classmethod
    def blank_role_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: object) -> object:
        """Unparseable dates become None rather than failing the command."""
        if v is None or isinstance(v, date):
            return v
        if not isinstance(v, str) or not v.strip():
            return None
        text = v.strip().replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            return None

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: object) -> object:
        if v is None:
            return "medium"
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("group_id", mode="before")
    @classmethod
    def tolerate_bad_group_id(cls, v: object) -> object:
        """The executing group is pinned by the parser; bad ids are dropped."""
        if v is None or isinstance(v, UUID):
            return v
        try:
            return UUID(str(v))
        except ValueError:
            return None


# Tagged union of recognized command types, keyed by the payload's "type".
COMMAND_TYPES: dict[str, type[TaskAssignmentCommand]] = {
    "task_assignment": TaskAssignmentCommand,
}


class ParsedReply(BaseModel):
    """Interpretation of a raw model reply."""

    response_text: str
    is_command: bool = False
    command: TaskAssignmentCommand | None = None
    permission_denied: bool = False


class CommandOutcome(BaseModel):
    """Result of executing a command."""

    response_text: str
    permission_denied: bool = False
    created_task_ids: list[UUID] = Field(default_factory=list)
    recipient_count: int = 0
    failed: bool = False
