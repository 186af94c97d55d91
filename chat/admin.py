"""
chat.admin module.

Django-admin registrations for the *perplexia* chat application.
"""

from asgiref.sync import async_to_sync
from django.conf import settings
from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest

from .key_registry import KeyRegistry
from .models import ApiKeyStatus, Chat, Message

# ---------------------------------------------------------------------------
# Admin registrations
# ---------------------------------------------------------------------------


class MessageInline(admin.TabularInline):
    """Read-only list of a chat's messages on the chat page."""

    model = Message
    fields = ("role", "content", "created_at")
    readonly_fields = ("role", "content", "created_at")
    extra = 0
    can_delete = False


@admin.register(Chat)
class ChatAdmin(admin.ModelAdmin):
    """Admin configuration for :class:`chat.models.Chat`."""

    list_display = ("id", "title", "model", "created_at", "updated_at")
    search_fields = ("title",)
    list_filter = ("model",)
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-updated_at",)
    inlines = [MessageInline]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin configuration for :class:`chat.models.Message`."""

    list_display = ("id", "role", "short_content", "chat", "created_at")
    list_filter = ("role",)
    search_fields = ("content", "chat__title")
    readonly_fields = ("created_at",)
    ordering = ("-created_at",)

    @staticmethod
    def short_content(obj: "Message") -> str:
        """Return a truncated preview of the message."""
        text: str = str(obj.content)
        return text[:60] + ("…" if len(text) > 60 else "")


# --------------------------------------------------------------------------- #
# API key rotation                                                            #
# --------------------------------------------------------------------------- #


@admin.register(ApiKeyStatus)
class ApiKeyStatusAdmin(admin.ModelAdmin):
    """
    Admin configuration for :class:`chat.models.ApiKeyStatus`.

    Key state is only changed through :class:`chat.key_registry.KeyRegistry`,
    so every field is read-only here and reactivation is an admin action.
    """

    list_display = (
        "key_index",
        "is_active",
        "is_exhausted",
        "error_count",
        "last_used",
    )
    list_filter = ("is_active", "is_exhausted")
    readonly_fields = (
        "key_index",
        "is_active",
        "is_exhausted",
        "error_count",
        "last_used",
    )
    ordering = ("key_index",)
    actions = ["reactivate_keys"]

    def has_add_permission(self, request: HttpRequest) -> bool:
        # Slots are seeded from PERPLEXITY_API_KEYS only
        return False

    def has_delete_permission(self, request: HttpRequest, obj=None) -> bool:
        return False

    @admin.action(description="Reactivate selected keys")
    def reactivate_keys(self, request: HttpRequest, queryset: QuerySet) -> None:
        registry = KeyRegistry(settings.PERPLEXITY_API_KEYS)
        reactivated = 0
        for key_index in queryset.values_list("key_index", flat=True):
            if async_to_sync(registry.reactivate)(key_index):
                reactivated += 1
        self.message_user(
            request, f"Reactivated {reactivated} API key(s).", messages.SUCCESS
        )
