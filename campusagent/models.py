from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str | list[dict[str, Any]]


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId", max_length=256)
    # Left untyped so a missing or non-string message is rejected by the route with a 400.
    user_message: Any = Field(default=None, alias="userMessage")
    conversation_history: list[HistoryMessage] = Field(
        default_factory=list, alias="conversationHistory"
    )


class UserScopedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId", max_length=256)


class CanvasConnectRequest(UserScopedRequest):
    api_key: str | None = Field(default=None, alias="apiKey", max_length=4096)
    base_url: str | None = Field(default=None, alias="baseUrl", max_length=2048)


class DiscussionsRequest(UserScopedRequest):
    course_ids: list[int] | None = Field(default=None, alias="courseIds", max_length=50)


class TTSRequest(BaseModel):
    text: Any = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
