"""Translate provider messages into the normalized client event vocabulary."""

import json
import logging
from typing import Any, Dict, List

from ..utils import truncate
from .events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    InitEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from .messages import (
    AssistantMessage,
    ProviderMessage,
    ResultMessage,
    StreamEventMessage,
    SystemMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UnknownMessage,
    UserMessage,
)

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Agent execution failed"


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def tool_result_text(content: Any) -> str | None:
    """Flatten tool_result content into a single string (None when absent)."""
    if content is None:
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            str(part["text"]) if isinstance(part, dict) and "text" in part else _dumps(part)
            for part in content
        )
    return _dumps(content)


def total_input_tokens(usage: Dict[str, Any] | None) -> int:
    """Input tokens including cache reads and cache writes."""
    if not usage:
        return 0
    return (
        (usage.get("input_tokens") or 0)
        + (usage.get("cache_read_input_tokens") or 0)
        + (usage.get("cache_creation_input_tokens") or 0)
    )


def translate_message(
    message: ProviderMessage, has_streamed_text: bool, tag: str = ""
) -> List[AgentEvent]:
    """Map one provider message to zero or more normalized events.

    Args:
        message: Provider message from the adapter.
        has_streamed_text: Whether text already arrived as stream deltas in this run.
            Assistant text blocks are only emitted when it is False, since the
            same text was otherwise delivered incrementally.
        tag: Log prefix identifying the run.

    Returns:
        List[AgentEvent]: Events in block order; empty when nothing is client-visible.
    """
    if isinstance(message, SystemMessage):
        return _translate_system(message, tag)
    if isinstance(message, AssistantMessage):
        return _translate_assistant(message, has_streamed_text, tag)
    if isinstance(message, UserMessage):
        return _translate_user(message, tag)
    if isinstance(message, ResultMessage):
        return _translate_result(message, tag)
    if isinstance(message, StreamEventMessage):
        return _translate_stream_event(message, tag)
    if isinstance(message, UnknownMessage):
        logger.info("%s Unknown provider message: %s", tag, message.type)
        return []
    logger.info("%s Unsupported provider message object: %r", tag, type(message).__name__)
    return []


def _translate_system(message: SystemMessage, tag: str) -> List[AgentEvent]:
    if message.subtype == "init":
        logger.info("%s Session init: %s", tag, message.session_id)
        return [InitEvent(session_id=message.session_id)]
    logger.info("%s System: %s", tag, message.subtype)
    return []


def _translate_assistant(
    message: AssistantMessage, has_streamed_text: bool, tag: str
) -> List[AgentEvent]:
    events: List[AgentEvent] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            logger.info("%s Text: %r", tag, truncate(block.text))
            if not has_streamed_text:
                events.append(TextEvent(content=block.text))
        elif isinstance(block, ToolUseBlock):
            logger.info("%s Tool call: %s(%s)", tag, block.name, truncate(_dumps(block.input)))
            events.append(ToolUseEvent(tool_name=block.name, input=block.input))
        elif isinstance(block, UnknownBlock):
            logger.info("%s Assistant block: %s", tag, block.type)
        else:
            logger.info("%s Assistant block: %s", tag, type(block).__name__)
    return events


def _translate_user(message: UserMessage, tag: str) -> List[AgentEvent]:
    if isinstance(message.content, str):
        return []
    events: List[AgentEvent] = []
    for block in message.content:
        if isinstance(block, ToolResultBlock):
            result = tool_result_text(block.content)
            tool_id = block.tool_use_id or "unknown"
            logger.info(
                "%s Tool result [%s]: %s", tag, tool_id, truncate(result or "(empty)")
            )
            events.append(ToolResultEvent(tool_name=tool_id, result=result))
        else:
            block_type = block.type if isinstance(block, UnknownBlock) else type(block).__name__
            logger.info("%s User block: %s", tag, block_type)
    return events


def _translate_result(message: ResultMessage, tag: str) -> List[AgentEvent]:
    usage = message.usage or {}
    input_tokens = total_input_tokens(usage)
    if message.usage:
        logger.info(
            "%s Total tokens: input=%s output=%s cache_read=%s cache_create=%s (total_input=%s)",
            tag,
            usage.get("input_tokens") or 0,
            usage.get("output_tokens") or 0,
            usage.get("cache_read_input_tokens") or 0,
            usage.get("cache_creation_input_tokens") or 0,
            input_tokens,
        )
    for model_name, model_usage in (message.model_usage or {}).items():
        logger.info("%s Model %s usage: %s", tag, model_name, model_usage)

    if message.subtype == "success":
        logger.info("%s Session completed: %s", tag, message.session_id)
        return [DoneEvent(session_id=message.session_id, input_tokens=input_tokens)]

    error_message = "; ".join(message.errors) if message.errors else DEFAULT_ERROR_MESSAGE
    logger.error("%s Session failed (%s): %s", tag, message.subtype, error_message)
    return [ErrorEvent(message=error_message)]


def _translate_stream_event(message: StreamEventMessage, tag: str) -> List[AgentEvent]:
    event = message.event
    event_type = event.get("type")
    if event_type == "content_block_delta":
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta" and "text" in delta:
            return [TextEvent(content=delta["text"])]
        return []
    if event_type == "message_delta":
        output_tokens = (event.get("usage") or {}).get("output_tokens")
        if output_tokens:
            logger.debug("%s Stream: message_delta (output_tokens: %s)", tag, output_tokens)
        else:
            logger.debug("%s Stream: message_delta", tag)
        return []
    logger.debug("%s Stream: %s", tag, event_type)
    return []
