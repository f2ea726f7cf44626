import asyncio
import logging
from typing import List, Sequence

from openai import AsyncOpenAI, OpenAIError

from ..models import HistoryMessage
from ..services.token_store import TokenStore
from ..settings import get_settings
from .transcript import TranscriptStore, get_transcript_store

logger = logging.getLogger(__name__)

FALLBACK_SNIPPET_LENGTH = 300
FALLBACK_PLACEHOLDER = "There is earlier conversation history."


async def should_compact(
    session_id: str,
    token_store: TokenStore,
    threshold: int | None = None,
    transcripts: TranscriptStore | None = None,
) -> bool:
    """Decide whether a session's context has outgrown the token budget.

    Uses the recorded input-token count when there is one. Otherwise the
    transcript file size is compared against threshold * bytes-per-token.
    A missing transcript means a new session; any other stat failure is
    treated as "no compaction needed".

    Args:
        session_id: Provider session id.
        token_store: Store holding input-token counts from earlier runs.
        threshold: Token threshold; defaults to settings.compaction_threshold.
        transcripts: Transcript store used for the file-size fallback.

    Returns:
        bool: True when the session should be compacted before continuing.
    """
    settings = get_settings()
    token_threshold = threshold if threshold is not None else settings.compaction_threshold

    stored = await token_store.get(session_id)
    if stored is not None:
        return stored > token_threshold

    size_threshold = token_threshold * settings.bytes_per_token
    path = (transcripts or get_transcript_store()).path_for(session_id)
    if path is None:
        return False
    try:
        size = (await asyncio.to_thread(path.stat)).st_size
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not stat transcript for %s, skipping compaction: %s", session_id, e)
        return False

    if size > size_threshold:
        logger.info(
            "[Compaction] Session file %s is %.0fKB (threshold: %.0fKB, tokenThreshold: %s)",
            session_id,
            size / 1024,
            size_threshold / 1024,
            token_threshold,
        )
        return True
    return False


def _make_summary_client() -> AsyncOpenAI | None:
    """Construct the client for summary calls, or None when no key is configured."""
    settings = get_settings()
    api_key = settings.summary_api_key or settings.anthropic_api_key
    if not api_key:
        return None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.summary_base_url,
        timeout=settings.summary_request_timeout_seconds,
    )


def build_summary_prompt(messages: Sequence[HistoryMessage]) -> str:
    """Render the most recent messages, each clipped, under the summary instruction."""
    settings = get_settings()
    recent = messages[-settings.compaction_recent_messages:]
    transcript = "\n\n".join(
        f"[{m.role}]: {m.content[:settings.compaction_content_max_length]}" for m in recent
    )
    return f"{settings.compaction_summary_prompt}\n\n---\n{transcript}\n---\n\nSummary:"


def build_fallback_summary(messages: Sequence[HistoryMessage]) -> str:
    """Template summary from the last user request and the last reply."""
    last_user = next((m for m in reversed(messages) if m.role == "user"), None)
    last_assistant = next((m for m in reversed(messages) if m.role == "assistant"), None)
    parts: List[str] = []
    if last_user is not None:
        parts.append(f"Last user request: {last_user.content[:FALLBACK_SNIPPET_LENGTH]}")
    if last_assistant is not None:
        parts.append(f"Last response: {last_assistant.content[:FALLBACK_SNIPPET_LENGTH]}")
    return "\n".join(parts) or FALLBACK_PLACEHOLDER


async def generate_summary(
    session_id: str,
    transcripts: TranscriptStore | None = None,
    client: AsyncOpenAI | None = None,
) -> str:
    """Summarize a session's transcript with the secondary model.

    Returns "" for an empty transcript. Falls back to a template summary when
    no API key is configured, the call fails, or the reply has no text.
    """
    store = transcripts or get_transcript_store()
    # Large transcripts are parsed off the event loop.
    messages = await asyncio.to_thread(store.read, session_id)
    if not messages:
        return ""

    client = client or _make_summary_client()
    if client is None:
        logger.warning("[Compaction] No summary API key set, using fallback summary")
        return build_fallback_summary(messages)

    settings = get_settings()
    try:
        response = await client.chat.completions.create(
            model=settings.summary_model,
            max_tokens=settings.compaction_summary_max_tokens,
            messages=[{"role": "user", "content": build_summary_prompt(messages)}],
        )
    except (OpenAIError, TimeoutError, ConnectionError) as e:
        logger.error("[Compaction] Summary generation failed: %s", e)
        return build_fallback_summary(messages)

    try:
        content = (response.choices[0].message.content or "").strip()
    except (AttributeError, IndexError, TypeError) as e:
        logger.error("[Compaction] Summary response parse failed: %s", e)
        return build_fallback_summary(messages)

    if not content:
        logger.warning("[Compaction] Summary model returned no text, using fallback summary")
        return build_fallback_summary(messages)
    return content
