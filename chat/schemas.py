"""
Pydantic models for the JSON API and the Perplexity chat-completions payload.

Request models validate what the front-end posts; the completion models give
the provider's response a fixed shape instead of probing dictionaries.
"""

import uuid
from typing import List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# API requests
# ---------------------------------------------------------------------------


class CreateChatRequest(BaseModel):
    """Body of ``POST /api/chats/``; every field is optional."""

    title: Optional[str] = Field(default=None, max_length=255)
    model: Optional[str] = Field(default=None, max_length=64)


class UpdateChatRequest(BaseModel):
    """Body of ``PATCH /api/chats/<id>/``."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    model: Optional[str] = Field(default=None, min_length=1, max_length=64)


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/messages/``."""

    chat_id: uuid.UUID
    content: str = Field(..., min_length=1, description="The user's prompt")
    model: Optional[str] = Field(
        default=None, description="Overrides the chat's model for this turn"
    )


# ---------------------------------------------------------------------------
# Perplexity chat completions
# ---------------------------------------------------------------------------


class CompletionMessage(BaseModel):
    """The message inside one completion choice."""

    role: str = "assistant"
    content: str


class CompletionChoice(BaseModel):
    """One choice of a chat-completions response."""

    index: int = 0
    message: CompletionMessage
    finish_reason: Optional[str] = None


class CompletionUsage(BaseModel):
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionResponse(BaseModel):
    """Successful (HTTP 2xx) chat-completions body."""

    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[CompletionChoice] = Field(default_factory=list)
    citations: Optional[List[str]] = None
    usage: Optional[CompletionUsage] = None
