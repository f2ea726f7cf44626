"""Agent package for the Smart Fire Hub AI relay.

Exposes the service that turns a chat request into a stream of normalized
events, keeping translation, compaction and the run loop in separate modules.
"""

from .events import AgentEvent, format_sse
from .run_loop import run_agent
from .service import FireHubAgentService, get_agent_service
from .translator import translate_message

__all__ = [
    "AgentEvent",
    "FireHubAgentService",
    "format_sse",
    "get_agent_service",
    "run_agent",
    "translate_message",
]
