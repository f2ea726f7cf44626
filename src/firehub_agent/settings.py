from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Path = Path("logs")

    cors_origins: str = "*"

    model: str = "claude-sonnet-4-6"
    max_turns: int = 10
    heartbeat_interval_seconds: float = 10.0

    # Directory the agent CLI runs in; its path names the transcript folder.
    workdir: Path | None = None
    claude_projects_dir: Path = Path.home() / ".claude" / "projects"

    compaction_threshold: int = 50_000
    bytes_per_token: float = 1.45
    compaction_recent_messages: int = 20
    compaction_content_max_length: int = 500
    compaction_summary_max_tokens: int = 1024

    summary_model: str = "claude-haiku-4-5-20251001"
    summary_api_key: str | None = None
    anthropic_api_key: str | None = None
    summary_base_url: str | None = "https://api.anthropic.com/v1/"
    summary_request_timeout_seconds: float = 60.0

    redis_url: str | None = None
    token_ttl_seconds: int = 86400  # 24 hours

    mcp_server_name: str = "firehub"
    mcp_server_cmd: str | None = None
    api_base_url: str = "http://localhost:8080/api/v1"
    internal_service_token: str = ""

    agent_system_prompt: str = (
        "You are the AI assistant of Smart Fire Hub.\n"
        "You help users manage datasets, pipelines, triggers and API "
        "connections, and analyse their data.\n\n"
        "Use the available firehub tools to look things up before answering. "
        "Check dataset structure with get_dataset before writing SQL, and use "
        'data."{tableName}" when referring to a dataset table.\n'
        "Confirm destructive operations (delete, truncate, replace) with the "
        "user before running them.\n\n"
        "Keep your answers precise and reply in the user's language."
    )

    compaction_summary_prompt: str = (
        "Below is a conversation between an AI assistant and a user. "
        "Summarize it concisely.\n\n"
        "The summary must include:\n"
        "- names and IDs of the datasets and other resources the user was "
        "working with\n"
        "- the main actions performed (create, update, delete, query, ...)\n"
        "- the result of the last request and the current state\n"
        "- any work that was still in progress\n\n"
        "Write the summary in 3-5 sentences."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="allow",
    )

    @property
    def effective_workdir(self) -> Path:
        """Working directory used for the agent process and transcript lookup."""
        return self.workdir or Path.cwd()


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
