from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from .messages import ProviderMessage


@dataclass(frozen=True)
class AgentRequest:
    """Everything one run sends to the provider."""

    prompt: str
    user_id: int | float
    model: str
    max_turns: int
    system_prompt: str
    session_id: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class AgentProvider(Protocol):
    """Source of provider messages for a single run.

    ``stream`` returns an async generator; closing it (``aclose``) must cancel
    the underlying provider request.
    """

    def stream(self, request: AgentRequest) -> AsyncIterator[ProviderMessage]: ...
