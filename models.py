import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from config import ACTIVE_RUN_STATUSES


class PromptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("sessionId", "uuid", "session_id"),
        description="Client-chosen key for the conversation",
    )
    message: Optional[str] = Field(None, description="User message")


class ErrorResponse(BaseModel):
    message: str


class EventKind(str, Enum):
    RUN_CREATED = "thread.run.created"
    MESSAGE_DELTA = "thread.message.delta"
    REQUIRES_ACTION = "thread.run.requires_action"
    RUN_COMPLETED = "thread.run.completed"
    RUN_FAILED = "thread.run.failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: Optional[str]) -> "EventKind":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class FrameType(str, Enum):
    TEXT = "text"
    STATUS = "status"
    ERROR = "error"


@dataclass(frozen=True)
class OutputFrame:
    type: FrameType
    content: str

    def to_json(self) -> str:
        return json.dumps({"type": self.type.value, "content": self.content}, ensure_ascii=False)

    @staticmethod
    def text(content: str) -> "OutputFrame":
        return OutputFrame(FrameType.TEXT, content)

    @staticmethod
    def status(content: str) -> "OutputFrame":
        return OutputFrame(FrameType.STATUS, content)

    @staticmethod
    def error(content: str) -> "OutputFrame":
        return OutputFrame(FrameType.ERROR, content)


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    output: Any
    # output already encoded for submission; filled in by the dispatcher
    encoded: Optional[str] = field(default=None, compare=False)

    @property
    def failed(self) -> bool:
        return isinstance(self.output, dict) and self.output.get("status") == "failure"

    def to_submission(self) -> Dict[str, str]:
        encoded = self.encoded if self.encoded is not None else json.dumps(self.output)
        return {"tool_call_id": self.tool_call_id, "output": encoded}

    @staticmethod
    def success(tool_call_id: str, output: Any, encoded: Optional[str] = None) -> "ToolResult":
        return ToolResult(tool_call_id=tool_call_id, output=output, encoded=encoded)

    @staticmethod
    def failure(tool_call_id: str, message: str) -> "ToolResult":
        return ToolResult(tool_call_id=tool_call_id, output={"status": "failure", "message": message})


@dataclass(frozen=True)
class RunInfo:
    id: str
    status: str

    @property
    def active(self) -> bool:
        return self.status in ACTIVE_RUN_STATUSES
