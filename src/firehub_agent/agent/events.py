import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Union


@dataclass(frozen=True)
class InitEvent:
    type: ClassVar[str] = "init"
    session_id: str | None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "sessionId": self.session_id}


@dataclass(frozen=True)
class TextEvent:
    type: ClassVar[str] = "text"
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ToolUseEvent:
    type: ClassVar[str] = "tool_use"
    tool_name: str
    input: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "toolName": self.tool_name, "input": self.input}


@dataclass(frozen=True)
class ToolResultEvent:
    type: ClassVar[str] = "tool_result"
    tool_name: str
    result: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type, "toolName": self.tool_name}
        if self.result is not None:
            data["result"] = self.result
        return data


@dataclass(frozen=True)
class TurnEvent:
    type: ClassVar[str] = "turn"
    turn: int

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "turn": self.turn}


@dataclass(frozen=True)
class DoneEvent:
    type: ClassVar[str] = "done"
    session_id: str | None
    input_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "sessionId": self.session_id,
            "inputTokens": self.input_tokens,
        }


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


AgentEvent = Union[
    InitEvent,
    TextEvent,
    ToolUseEvent,
    ToolResultEvent,
    TurnEvent,
    DoneEvent,
    ErrorEvent,
]

TERMINAL_EVENTS = (DoneEvent, ErrorEvent)

KEEPALIVE_FRAME = ":ok\n\n"


def format_sse(event: AgentEvent) -> str:
    """Frame an event as a Server-Sent Events message."""
    data = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
    return f"event: {event.type}\ndata: {data}\n\n"
