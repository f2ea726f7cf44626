import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Tuple

from ..models import ChatRequest, HistoryMessage
from ..services.token_store import TokenStore, get_token_store_async
from ..settings import get_settings
from .compaction import generate_summary, should_compact
from .events import AgentEvent, DoneEvent
from .provider import AgentProvider, AgentRequest
from .run_loop import run_agent
from .transcript import TranscriptStore, get_transcript_store

logger = logging.getLogger(__name__)

COMPACTED_PROMPT_TEMPLATE = (
    "[System note] The earlier conversation in this session was too long and "
    "has been summarized. Continue using this summary as context.\n\n"
    "Summary of the earlier conversation:\n{summary}\n\n"
    "Current request:\n{message}"
)


def build_compacted_prompt(summary: str, message: str) -> str:
    return COMPACTED_PROMPT_TEMPLATE.format(summary=summary, message=message)


class FireHubAgentService:
    """Orchestrates a chat request: compaction, the agent run, and token accounting."""

    def __init__(
        self,
        provider: AgentProvider | None = None,
        token_store: TokenStore | None = None,
        transcripts: TranscriptStore | None = None,
    ) -> None:
        self._provider = provider
        self._token_store = token_store
        self._transcripts = transcripts

    @property
    def provider(self) -> AgentProvider:
        if self._provider is None:
            # Imported lazily so the SDK is only loaded when a run starts.
            from .claude_provider import ClaudeAgentProvider

            self._provider = ClaudeAgentProvider()
        return self._provider

    @property
    def transcripts(self) -> TranscriptStore:
        return self._transcripts or get_transcript_store()

    async def get_token_store(self) -> TokenStore:
        if self._token_store is None:
            self._token_store = await get_token_store_async()
        return self._token_store

    def read_history(self, session_id: str) -> List[HistoryMessage]:
        """Return the session's user/assistant history ([] when there is none)."""
        return self.transcripts.read(session_id)

    async def prepare_prompt(self, chat: ChatRequest) -> Tuple[str, str | None]:
        """Return the prompt and session id to run with, compacting the session if needed.

        A compacted session is not resumed: the summary is folded into the
        prompt and the provider starts a fresh session. If the summary cannot
        be produced the original message and session id are kept.
        """
        if not chat.session_id:
            return chat.message, None

        store = await self.get_token_store()
        transcripts = self.transcripts
        if not await should_compact(chat.session_id, store, chat.session_max_tokens, transcripts):
            return chat.message, chat.session_id

        logger.info("[Compaction] Compacting session %s", chat.session_id)
        try:
            summary = await generate_summary(chat.session_id, transcripts)
        except Exception as e:
            logger.exception(
                "[Compaction] Summary failed, resuming session %s unchanged: %s",
                chat.session_id,
                e,
            )
            return chat.message, chat.session_id

        if not summary:
            logger.warning(
                "[Compaction] Empty transcript for %s, resuming session unchanged",
                chat.session_id,
            )
            return chat.message, chat.session_id

        await store.delete(chat.session_id)
        logger.info(
            "[Compaction] Session %s compacted (%d chars summary), starting a new session",
            chat.session_id,
            len(summary),
        )
        return build_compacted_prompt(summary, chat.message), None

    def build_request(self, chat: ChatRequest, prompt: str, session_id: str | None) -> AgentRequest:
        settings = get_settings()
        return AgentRequest(
            prompt=prompt,
            user_id=chat.user_id,
            model=chat.model or settings.model,
            max_turns=chat.max_turns or settings.max_turns,
            system_prompt=chat.system_prompt or settings.agent_system_prompt,
            session_id=session_id,
            temperature=chat.temperature,
            max_tokens=chat.max_tokens,
        )

    async def stream_chat(
        self, chat: ChatRequest, abort: asyncio.Event | None = None
    ) -> AsyncIterator[AgentEvent]:
        """Run the agent for a chat request and yield its events.

        Args:
            chat: Validated chat request.
            abort: Set when the client goes away; ends the run without further events.

        Yields:
            AgentEvent: Events from the run loop, unchanged.
        """
        prompt, session_id = await self.prepare_prompt(chat)
        request = self.build_request(chat, prompt, session_id)
        store = await self.get_token_store()

        async with aclosing(run_agent(request, self.provider, abort)) as events:
            async for event in events:
                if isinstance(event, DoneEvent) and event.session_id and event.input_tokens > 0:
                    await store.set(event.session_id, event.input_tokens)
                yield event


_SERVICE: FireHubAgentService | None = None


def get_agent_service() -> FireHubAgentService:
    """Return the process-wide agent service."""
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = FireHubAgentService()
    return _SERVICE
