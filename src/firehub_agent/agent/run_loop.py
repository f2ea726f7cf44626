"""Agent run loop: drives one provider request and yields normalized events.

A run ends in exactly one of three ways: a terminal ``done``/``error`` event,
a single ``error`` event describing an upstream failure, or silently when the
caller aborts or cancels it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from ..settings import get_settings
from ..utils import clock_tag, truncate
from .events import (
    TERMINAL_EVENTS,
    AgentEvent,
    ErrorEvent,
    InitEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    TurnEvent,
)
from .heartbeat import Heartbeat
from .messages import ProviderMessage, has_tool_result
from .provider import AgentProvider, AgentRequest
from .translator import translate_message

logger = logging.getLogger(__name__)

_END = object()
_ABORTED = object()

INCOMPLETE_RUN_MESSAGE = "Agent stream ended without a result"


@dataclass
class RunState:
    """Mutable bookkeeping owned by a single run."""

    session_id: str | None = None
    turn: int = 1
    last_tool_name: str | None = None
    last_tool_started: float | None = None
    first_token_at: float | None = None
    has_streamed_text: bool = False
    done_emitted: bool = False
    started: float = field(default_factory=time.monotonic)

    def tag(self) -> str:
        return clock_tag(self.session_id)

    def elapsed(self) -> float:
        return time.monotonic() - self.started


def _track(event: AgentEvent, state: RunState) -> None:
    """Update run state for an event about to be emitted."""
    if isinstance(event, InitEvent):
        state.session_id = event.session_id or state.session_id
    elif isinstance(event, ToolUseEvent):
        state.last_tool_name = event.tool_name
        state.last_tool_started = time.monotonic()
    elif isinstance(event, ToolResultEvent):
        if state.last_tool_started is not None:
            logger.info(
                "%s Tool %s took %.2fs",
                state.tag(),
                state.last_tool_name,
                time.monotonic() - state.last_tool_started,
            )
            state.last_tool_started = None
    elif isinstance(event, TextEvent):
        if not state.has_streamed_text:
            state.has_streamed_text = True
            state.first_token_at = time.monotonic()
            logger.info("%s First token after %.2fs", state.tag(), state.elapsed())
    elif isinstance(event, TERMINAL_EVENTS):
        state.done_emitted = True
        logger.info(
            "%s Run finished (%s) after %d turn(s) in %.1fs",
            state.tag(),
            event.type,
            state.turn,
            state.elapsed(),
        )


async def _next_message(
    stream: AsyncIterator[ProviderMessage], abort_waiter: "asyncio.Future[Any]"
) -> Any:
    """Wait for the next provider message unless the abort signal fires first."""
    if abort_waiter.done():
        return _ABORTED
    fetch = asyncio.ensure_future(stream.__anext__())
    try:
        await asyncio.wait({fetch, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        fetch.cancel()
        await asyncio.gather(fetch, return_exceptions=True)
        raise
    if abort_waiter.done():
        fetch.cancel()
        await asyncio.gather(fetch, return_exceptions=True)
        return _ABORTED
    try:
        return fetch.result()
    except StopAsyncIteration:
        return _END


async def _close_stream(stream: AsyncIterator[ProviderMessage], tag: str) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except (RuntimeError, OSError) as e:
        logger.debug("%s Provider stream close failed: %s", tag, e)


async def run_agent(
    request: AgentRequest,
    provider: AgentProvider,
    abort: asyncio.Event | None = None,
    heartbeat_interval: float | None = None,
) -> AsyncIterator[AgentEvent]:
    """Run the agent for one chat request and yield normalized events.

    Args:
        request: Prompt, session and model options for the provider.
        provider: Message source for the run.
        abort: Set to stop the run; the provider stream is closed and no
            further event is yielded.
        heartbeat_interval: Seconds between liveness logs while waiting on the
            model; defaults to settings.heartbeat_interval_seconds.

    Yields:
        AgentEvent: init/text/tool_use/tool_result/turn events, then at most one
            terminal done/error event.
    """
    if heartbeat_interval is None:
        heartbeat_interval = get_settings().heartbeat_interval_seconds
    abort = abort or asyncio.Event()
    state = RunState(session_id=request.session_id)
    logger.info("%s User: %r", state.tag(), truncate(request.prompt, 500))

    heartbeat = Heartbeat(heartbeat_interval, lambda: f"{state.tag()} turn {state.turn}")
    stream = provider.stream(request)
    abort_waiter = asyncio.ensure_future(abort.wait())

    try:
        while True:
            heartbeat.start()
            try:
                message = await _next_message(stream, abort_waiter)
            finally:
                heartbeat.stop()

            if message is _ABORTED:
                logger.info("%s Run aborted by caller", state.tag())
                return
            if message is _END:
                break
            if state.done_emitted:
                logger.debug("%s Ignoring message after completion: %s", state.tag(), type(message).__name__)
                continue

            for event in translate_message(message, state.has_streamed_text, state.tag()):
                _track(event, state)
                yield event
                if abort.is_set():
                    logger.info("%s Run aborted by caller", state.tag())
                    return
                if state.done_emitted:
                    break

            if not state.done_emitted and has_tool_result(message):
                state.turn += 1
                logger.info("%s Turn %d", state.tag(), state.turn)
                yield TurnEvent(turn=state.turn)
                if abort.is_set():
                    logger.info("%s Run aborted by caller", state.tag())
                    return
    except asyncio.CancelledError:
        task = asyncio.current_task()
        if task is not None and task.cancelling():
            logger.info("%s Run cancelled", state.tag())
            raise
        # The provider request itself was cancelled; end like an abort.
        logger.info("%s Provider request cancelled", state.tag())
        return
    except Exception as e:
        if abort.is_set():
            logger.info("%s Run aborted by caller (%s)", state.tag(), e)
            return
        if state.done_emitted:
            # Provider teardown noise after a completed run.
            logger.debug("%s Provider error after completion ignored: %s", state.tag(), e)
            return
        logger.exception("%s Agent run failed: %s", state.tag(), e)
        yield ErrorEvent(message=str(e) or type(e).__name__)
        return
    finally:
        heartbeat.stop()
        abort_waiter.cancel()
        await _close_stream(stream, state.tag())

    if not state.done_emitted:
        logger.warning("%s Provider stream ended without a result message", state.tag())
        yield ErrorEvent(message=INCOMPLETE_RUN_MESSAGE)
