import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


RUN_EVENT_NAME = "code-agent/run"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class MessageType(str, Enum):
    RESULT = "RESULT"
    ERROR = "ERROR"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Fragment(BaseModel):
    """Generated code attached to one assistant message."""

    id: str
    message_id: str
    sandbox_url: str
    title: str
    files: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)


class Message(BaseModel):
    id: str
    project_id: str
    role: MessageRole
    type: MessageType
    content: str
    created_at: datetime = Field(default_factory=_now)
    fragment: Fragment | None = None


class Project(BaseModel):
    id: str
    name: str
    created_at: datetime = Field(default_factory=_now)


class FragmentInput(BaseModel):
    """Fragment fields supplied by the workflow when persisting a result."""

    sandbox_url: str
    title: str
    files: dict[str, str]


class RunEventData(BaseModel):
    value: str
    project_id: str = Field(alias="projectId")
    # Stored USER message holding ``value``, when the API saved one
    message_id: str | None = Field(default=None, alias="messageId")

    model_config = {"populate_by_name": True}


def make_event_id() -> str:
    return f"evt_{int(time.time()*1000)}_{uuid.uuid4().hex[:8]}"


class TriggerEvent(BaseModel):
    """Event that starts one workflow run; the event id doubles as the run id."""

    name: str = RUN_EVENT_NAME
    data: RunEventData
    id: str = Field(default_factory=make_event_id)


class WorkflowResult(BaseModel):
    run_id: str
    project_id: str
    preview_url: str
    title: str
    summary: str
    files: dict[str, str] = Field(default_factory=dict)
    message_id: str
    is_error: bool

    def public(self) -> dict[str, Any]:
        return {"previewUrl": self.preview_url, "files": self.files, "summary": self.summary}
