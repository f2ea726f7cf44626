"""Provider message shapes consumed by the translator.

The provider adapter converts whatever its SDK yields into these dataclasses,
so the rest of the pipeline matches on a closed set of kinds. Anything the
adapter does not recognise becomes ``UnknownMessage`` / ``UnknownBlock``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Union


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str | None = None
    # str, list of content parts, any other JSON value, or None when absent.
    content: Any = None
    is_error: bool | None = None


@dataclass(frozen=True)
class UnknownBlock:
    type: str


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]


@dataclass(frozen=True)
class SystemMessage:
    subtype: str
    session_id: str | None = None


@dataclass(frozen=True)
class AssistantMessage:
    content: List[ContentBlock] = field(default_factory=list)
    model: str | None = None


@dataclass(frozen=True)
class UserMessage:
    content: Union[str, List[ContentBlock]] = field(default_factory=list)


@dataclass(frozen=True)
class ResultMessage:
    subtype: str
    session_id: str | None = None
    usage: Dict[str, Any] | None = None
    model_usage: Dict[str, Dict[str, Any]] | None = None
    errors: List[str] | None = None
    result: str | None = None


@dataclass(frozen=True)
class StreamEventMessage:
    """Partial-message event (raw Anthropic streaming event as a dict)."""

    event: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownMessage:
    type: str


ProviderMessage = Union[
    SystemMessage,
    AssistantMessage,
    UserMessage,
    ResultMessage,
    StreamEventMessage,
    UnknownMessage,
]


def has_tool_result(message: ProviderMessage) -> bool:
    """Return True for a user message carrying at least one tool_result block."""
    if not isinstance(message, UserMessage) or isinstance(message.content, str):
        return False
    return any(isinstance(block, ToolResultBlock) for block in message.content)
