import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from ..models import HistoryMessage
from ..settings import get_settings

logger = logging.getLogger(__name__)


def project_id_for(workdir: Path) -> str:
    """Folder name the agent CLI uses for a working directory ("/" -> "-")."""
    return str(workdir).replace("/", "-")


class _PendingAssistant:
    """Assistant text collected across transcript lines sharing one message id."""

    def __init__(self, entry_id: str, timestamp: str) -> None:
        self.id = entry_id
        self.timestamp = timestamp
        self.text_parts: List[str] = []

    def to_message(self) -> HistoryMessage | None:
        content = "".join(self.text_parts)
        if not content:
            return None
        return HistoryMessage(
            id=self.id, role="assistant", content=content, timestamp=self.timestamp
        )


class TranscriptStore:
    """Reads session transcripts written by the agent CLI (JSONL, one entry per line)."""

    def __init__(self, projects_dir: Path, workdir: Path) -> None:
        self._dir = projects_dir / project_id_for(workdir)

    def path_for(self, session_id: str) -> Path | None:
        """Return the transcript path, or None if session_id is not a plain file name."""
        if not session_id or Path(session_id).name != session_id or session_id in (".", ".."):
            return None
        return self._dir / f"{session_id}.jsonl"

    def read(self, session_id: str) -> List[HistoryMessage]:
        """Load the session's history; missing or unreadable files yield []."""
        path = self.path_for(session_id)
        if path is None:
            logger.warning("Rejected transcript lookup for session id %r", session_id)
            return []
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read transcript %s: %s", path, e)
            return []
        return parse_transcript(raw)


def parse_transcript(raw: str) -> List[HistoryMessage]:
    """Project transcript lines into user/assistant history messages.

    Meta entries, synthetic responses and user entries carrying tool results
    are skipped. Assistant lines that share an API message id are merged in
    file order.
    """
    messages: List[HistoryMessage] = []
    pending: _PendingAssistant | None = None
    pending_msg_id: str | None = None

    def flush() -> None:
        nonlocal pending, pending_msg_id
        if pending is not None:
            message = pending.to_message()
            if message is not None:
                messages.append(message)
        pending = None
        pending_msg_id = None

    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry: Dict[str, Any] = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue

        entry_type = entry.get("type")
        if entry_type not in ("user", "assistant"):
            continue
        if entry.get("isMeta"):
            continue

        message = entry.get("message")
        if not isinstance(message, dict):
            continue
        if message.get("model") == "<synthetic>":
            continue

        blocks = message.get("content")
        if not isinstance(blocks, list):
            continue

        entry_id = entry.get("uuid") or str(uuid.uuid4())
        timestamp = entry.get("timestamp") or datetime.now(timezone.utc).isoformat()

        if entry_type == "user":
            flush()
            if any(_block_type(b) == "tool_result" for b in blocks):
                continue
            text = "".join(
                str(b.get("text", "")) for b in blocks if _block_type(b) == "text"
            )
            if text:
                messages.append(
                    HistoryMessage(id=entry_id, role="user", content=text, timestamp=timestamp)
                )
            continue

        msg_id = message.get("id") or entry_id
        if pending is None or pending_msg_id != msg_id:
            flush()
            pending = _PendingAssistant(entry_id, timestamp)
            pending_msg_id = msg_id
        for block in blocks:
            if _block_type(block) == "text":
                pending.text_parts.append(str(block.get("text", "")))

    flush()
    return messages


def _block_type(block: Any) -> str | None:
    if isinstance(block, dict):
        return block.get("type")
    return None


def get_transcript_store() -> TranscriptStore:
    """Build a TranscriptStore from settings."""
    settings = get_settings()
    return TranscriptStore(settings.claude_projects_dir, settings.effective_workdir)
