from dataclasses import dataclass
from typing import Any, Dict, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    ValidationError,
    conint,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

PositiveStrictInt = conint(strict=True, gt=0)


@dataclass
class HistoryMessage:
    """One user or assistant turn reconstructed from a session transcript."""

    id: str
    role: Literal["user", "assistant"]
    content: str
    timestamp: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ChatRequest(BaseModel):
    """Body of POST /agent/chat (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    message: StrictStr = Field(None, validate_default=True)
    user_id: int | float = Field(None, alias="userId", validate_default=True)
    session_id: StrictStr | None = Field(None, alias="sessionId")
    model: StrictStr | None = None
    max_turns: PositiveStrictInt | None = Field(None, alias="maxTurns")
    system_prompt: StrictStr | None = Field(None, alias="systemPrompt")
    temperature: float | None = None
    max_tokens: PositiveStrictInt | None = Field(None, alias="maxTokens")
    session_max_tokens: PositiveStrictInt | None = Field(None, alias="sessionMaxTokens")

    @model_validator(mode="before")
    @classmethod
    def _require_object(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise PydanticCustomError("body_type", "request body must be a JSON object")
        return data

    @field_validator("message", mode="before")
    @classmethod
    def _check_message(cls, value: Any) -> Any:
        if not value or not isinstance(value, str):
            raise PydanticCustomError("message_required", "message is required and must be a string")
        return value

    @field_validator("user_id", mode="before")
    @classmethod
    def _check_user_id(cls, value: Any) -> Any:
        if not value or not _is_number(value):
            raise PydanticCustomError("user_id_required", "userId is required and must be a number")
        return value

    @field_validator("temperature", mode="before")
    @classmethod
    def _check_temperature(cls, value: Any) -> Any:
        if value is not None and not _is_number(value):
            raise PydanticCustomError("number_type", "temperature must be a number")
        return value

    @field_validator("session_id", "model", "system_prompt", mode="before")
    @classmethod
    def _empty_string_is_unset(cls, value: Any) -> Any:
        return None if value == "" else value


def validation_error_message(error: ValidationError) -> str:
    """First validation failure as "field: reason", or the bare reason for body-level errors."""
    first = error.errors()[0]
    loc = ".".join(str(part) for part in first["loc"])
    if first["type"] in ("body_type", "message_required", "user_id_required", "number_type") or not loc:
        return first["msg"]
    return f"{loc}: {first['msg']}"


def parse_chat_request(payload: Any) -> ChatRequest:
    """Validate a decoded JSON body and build a ChatRequest.

    Raises:
        ValidationError: If a required field is missing or any field has the wrong type.
    """
    return ChatRequest.model_validate(payload)
