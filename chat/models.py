"""Database models for the Chat application.

Contains the Chat and Message ORM models that persist conversations, plus the
ApiKeyStatus rows that record which Perplexity API keys are still usable.
"""

import uuid

# ---------------------------------------------------------------------------
# Django
from django.db import models


class Chat(models.Model):
    """Represents a single chat thread that groups many Message rows."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(
        max_length=255,
        default="New Chat",
        help_text="Chat title, set from the first message unless renamed.",
    )
    model = models.CharField(
        max_length=64,
        default="sonar",
        help_text="Perplexity model used when a message names none",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Django model metadata."""

        db_table = "chats"
        ordering = ["-updated_at"]
        verbose_name = "Chat"
        verbose_name_plural = "Chats"

    def __str__(self) -> str:
        """Return a human-readable representation for admin & debugging."""
        friendly_date: str = self.created_at.strftime("%Y-%m-%d %H:%M")
        return f"{str(self.title)} ({friendly_date})"

    def to_dict(self) -> dict:
        """Serialize for the JSON API."""
        return {
            "id": str(self.id),
            "title": self.title,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class Message(models.Model):
    """
    Stores one turn of a chat.

    Details:
      • ``role``      – ``user`` for prompts, ``assistant`` for Perplexity answers
      • ``content``   – the message text
      • ``citations`` – source URLs Perplexity returned with an answer
    """

    ROLE_USER = "user"
    ROLE_ASSISTANT = "assistant"
    ROLE_CHOICES = [
        (ROLE_USER, "User"),
        (ROLE_ASSISTANT, "Assistant"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Chat this message belongs to",
    )
    role = models.CharField(max_length=16, choices=ROLE_CHOICES)
    content = models.TextField()
    citations = models.JSONField(
        blank=True,
        null=True,
        help_text="Citation URLs returned by Perplexity",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        """Django model metadata."""

        db_table = "messages"
        # Group by chat, then chronological order within each.
        ordering = ["chat_id", "created_at"]
        verbose_name = "Message"
        verbose_name_plural = "Messages"

    def __str__(self) -> str:
        """Return a truncated preview of the content."""
        text: str = str(self.content)
        return f"{self.role}: " + text[:50] + ("…" if len(text) > 50 else "")

    def to_dict(self) -> dict:
        """Serialize for the JSON API."""
        return {
            "id": str(self.id),
            "chat_id": str(self.chat_id),
            "role": self.role,
            "content": self.content,
            "citations": self.citations,
            "created_at": self.created_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# API key rotation
# ---------------------------------------------------------------------------


class ApiKeyStatus(models.Model):
    """
    Bookkeeping for one configured Perplexity API key.

    ``key_index`` is the 1-based position of the key in
    ``settings.PERPLEXITY_API_KEYS``; the secret itself is never stored.
    Rows are seeded once by :meth:`chat.key_registry.KeyRegistry.ensure_initialized`
    and only ever updated afterwards.
    """

    key_index = models.PositiveIntegerField(
        unique=True, help_text="1-based position in PERPLEXITY_API_KEYS"
    )
    is_active = models.BooleanField(
        default=True, help_text="Key has been selected as the current key"
    )
    is_exhausted = models.BooleanField(
        default=False, help_text="Key was rejected with a quota or rate-limit error"
    )
    last_used = models.DateTimeField(blank=True, null=True)
    error_count = models.PositiveIntegerField(default=0)

    class Meta:
        """Django model metadata."""

        db_table = "api_keys"
        ordering = ["key_index"]
        verbose_name = "API Key Status"
        verbose_name_plural = "API Key Statuses"
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(is_active=True, is_exhausted=True),
                name="api_key_not_active_and_exhausted",
            ),
        ]

    def __str__(self) -> str:
        """Return the key index and its state."""
        if self.is_exhausted:
            state = "exhausted"
        elif self.is_active:
            state = "active"
        else:
            state = "idle"
        return f"Key {self.key_index} ({state})"
