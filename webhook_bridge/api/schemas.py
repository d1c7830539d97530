"""Pydantic models for the OpenAI-compatible request surface."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Single chat message.

    Content is either a string or a list of typed parts such as
    {"type": "text", "text": ...} and {"type": "image_url", "image_url": {"url": ...}}.
    """
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"]
    content: str | list[dict[str, Any]] | None = ""


class ChatCompletionRequest(BaseModel):
    """Incoming /v1/chat/completions body.

    Extra fields (session_id, user, chat_id, ...) are kept for identity
    extraction.
    """
    model_config = ConfigDict(extra="allow")

    model: str = Field(..., min_length=1)
    messages: list[ChatMessage] = Field(..., min_length=1)
    stream: bool = False
