from datetime import datetime

DEFAULT_TRUNCATE_LENGTH = 200


def truncate(text: str, max_len: int = DEFAULT_TRUNCATE_LENGTH) -> str:
    """Shorten text for log previews, marking the cut with an ellipsis."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def clock_tag(session_id: str | None = None) -> str:
    """Log prefix like ``[14:03:22][abcd1234]`` for run-scoped messages."""
    now = datetime.now().strftime("%H:%M:%S")
    if session_id:
        return f"[{now}][{session_id[:8]}]"
    return f"[{now}][new]"
