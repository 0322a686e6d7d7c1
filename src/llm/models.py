# src/llm/models.py — v2
"""LLM-specific types: conversation records, wire messages, request and response.

ConversationMessage is the locally stored turn; WireMessage is what goes on
the wire. Wire types serialize to the OpenAI chat-completions JSON shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConversationMessage(BaseModel):
    """Single stored conversation turn."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Literal["user", "assistant"]
    content: str
    photos: tuple[str, ...] | None = None  # data URIs, oldest first
    timestamp: datetime

    @model_validator(mode="after")
    def _photos_only_on_user(self) -> ConversationMessage:
        if self.photos and self.role != "user":
            raise ValueError("photos may only be attached to user messages")
        return self


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class WireMessage(BaseModel):
    """Transport-level message: plain text or an ordered list of parts."""

    role: Literal["system", "user", "assistant"]
    content: str | list[ContentPart]

    @property
    def has_images(self) -> bool:
        return isinstance(self.content, list) and any(
            isinstance(p, ImagePart) for p in self.content
        )


class LLMRequest(BaseModel):
    """Chat-completions request body."""

    model: str
    messages: list[WireMessage]
    max_tokens: int
    temperature: float
    stream: bool | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready body, omitting unset optional fields."""
        return self.model_dump(exclude_none=True)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChoiceMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = "assistant"
    content: str | None = None


class Choice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: ChoiceMessage
    finish_reason: str | None = None


class LLMResponse(BaseModel):
    """Chat-completions response, streamed or not."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)

    @property
    def content(self) -> str:
        """Text of the first choice, or '' when the endpoint returned none."""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""
