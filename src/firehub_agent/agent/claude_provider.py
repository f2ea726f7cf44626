"""Claude Agent SDK adapter: runs the agent CLI and converts its messages."""

import logging
import shlex
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List

from claude_agent_sdk import query
from claude_agent_sdk.types import (
    AssistantMessage as SdkAssistantMessage,
    ClaudeAgentOptions,
    McpStdioServerConfig,
    ResultMessage as SdkResultMessage,
    StreamEvent as SdkStreamEvent,
    SystemMessage as SdkSystemMessage,
    TextBlock as SdkTextBlock,
    ThinkingBlock as SdkThinkingBlock,
    ToolResultBlock as SdkToolResultBlock,
    ToolUseBlock as SdkToolUseBlock,
    UserMessage as SdkUserMessage,
)

from ..settings import Settings, get_settings
from .messages import (
    AssistantMessage,
    ContentBlock,
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
from .provider import AgentRequest

logger = logging.getLogger(__name__)

# Built-in CLI tools; only the firehub MCP tools may run.
BUILTIN_TOOLS = [
    "Bash",
    "Edit",
    "Glob",
    "Grep",
    "LS",
    "MultiEdit",
    "NotebookEdit",
    "NotebookRead",
    "Read",
    "Task",
    "TodoRead",
    "TodoWrite",
    "WebFetch",
    "WebSearch",
    "Write",
]


def to_content_block(block: Any) -> ContentBlock:
    """Convert one SDK content block into the closed block union."""
    if isinstance(block, SdkTextBlock):
        return TextBlock(text=block.text)
    if isinstance(block, SdkToolUseBlock):
        return ToolUseBlock(name=block.name, input=dict(block.input or {}), id=block.id)
    if isinstance(block, SdkToolResultBlock):
        return ToolResultBlock(
            tool_use_id=block.tool_use_id,
            content=block.content,
            is_error=block.is_error,
        )
    if isinstance(block, SdkThinkingBlock):
        return UnknownBlock(type="thinking")
    return UnknownBlock(type=getattr(block, "type", None) or type(block).__name__)


def to_provider_message(message: Any) -> ProviderMessage:
    """Convert one SDK message into the closed provider-message union."""
    if isinstance(message, SdkSystemMessage):
        data = message.data or {}
        return SystemMessage(subtype=message.subtype, session_id=data.get("session_id"))
    if isinstance(message, SdkAssistantMessage):
        return AssistantMessage(
            content=[to_content_block(b) for b in message.content],
            model=message.model,
        )
    if isinstance(message, SdkUserMessage):
        if isinstance(message.content, str):
            return UserMessage(content=message.content)
        return UserMessage(content=[to_content_block(b) for b in message.content])
    if isinstance(message, SdkResultMessage):
        return ResultMessage(
            subtype=message.subtype,
            session_id=message.session_id,
            usage=message.usage,
            model_usage=getattr(message, "model_usage", None),
            errors=_result_errors(message),
            result=message.result,
        )
    if isinstance(message, SdkStreamEvent):
        return StreamEventMessage(event=dict(message.event or {}))
    return UnknownMessage(type=type(message).__name__)


def _result_errors(message: SdkResultMessage) -> List[str] | None:
    """Failure details of a result; the SDK often carries them only in ``result``."""
    errors = getattr(message, "errors", None)
    if errors:
        return list(errors)
    if message.subtype != "success" and message.result:
        return [message.result]
    return errors


def _format_user_id(user_id: int | float) -> str:
    if isinstance(user_id, float) and user_id.is_integer():
        return str(int(user_id))
    return str(user_id)


class ClaudeAgentProvider:
    """Runs requests through the Claude Agent SDK with the firehub MCP tools."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _build_mcp_servers(self, request: AgentRequest) -> Dict[str, McpStdioServerConfig]:
        """Stdio MCP server forwarding tool calls to the backend API for this user."""
        cmd = self._settings.mcp_server_cmd
        if not cmd:
            logger.warning("MCP server has no startup command configured; running without tools")
            return {}
        parts = shlex.split(cmd)
        server = McpStdioServerConfig(command=parts[0])
        if parts[1:]:
            server["args"] = parts[1:]
        server["env"] = {
            "API_BASE_URL": self._settings.api_base_url,
            "INTERNAL_SERVICE_TOKEN": self._settings.internal_service_token,
            "FIREHUB_USER_ID": _format_user_id(request.user_id),
        }
        return {self._settings.mcp_server_name: server}

    def build_options(self, request: AgentRequest) -> ClaudeAgentOptions:
        env: Dict[str, str] = {}
        if request.max_tokens:
            env["CLAUDE_CODE_MAX_OUTPUT_TOKENS"] = str(request.max_tokens)
        if request.temperature is not None:
            logger.debug(
                "temperature=%s requested; the agent CLI exposes no sampling options",
                request.temperature,
            )

        allowed_tools: List[str] = [f"mcp__{self._settings.mcp_server_name}__*"]
        return ClaudeAgentOptions(
            model=request.model,
            system_prompt=request.system_prompt,
            max_turns=request.max_turns,
            resume=request.session_id,
            mcp_servers=self._build_mcp_servers(request),
            allowed_tools=allowed_tools,
            disallowed_tools=list(BUILTIN_TOOLS),
            permission_mode="bypassPermissions",
            include_partial_messages=True,
            cwd=str(self._settings.effective_workdir),
            env=env,
            setting_sources=[],
        )

    async def stream(self, request: AgentRequest) -> AsyncIterator[ProviderMessage]:
        options = self.build_options(request)
        async with aclosing(query(prompt=request.prompt, options=options)) as messages:
            async for message in messages:
                yield to_provider_message(message)
