import sys
from pathlib import Path

import pytest


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from firehub_agent.agent.transcript import TranscriptStore  # noqa: E402
from firehub_agent.services.token_store import InMemoryTokenStore  # noqa: E402


@pytest.fixture
def workdir() -> Path:
    return Path("/srv/firehub-ai-agent")


@pytest.fixture
def transcripts(tmp_path: Path, workdir: Path) -> TranscriptStore:
    """Transcript store rooted in a temporary projects directory."""
    return TranscriptStore(projects_dir=tmp_path, workdir=workdir)


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()
