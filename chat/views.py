"""
chat/views.py.

JSON API views for the chat application that integrates with Perplexity.
"""

import logging
from functools import wraps
from typing import Optional

from asgiref.sync import sync_to_async
from django.http import HttpRequest, HttpResponse, JsonResponse
from django_ratelimit.core import is_ratelimited
from django_ratelimit.exceptions import Ratelimited
from pydantic import ValidationError

from .ai_service import ai_service
from .exceptions import KeyRotationError
from .models import Chat, Message
from .perplexity_client import PERPLEXITY_MODELS, default_model, resolve_model
from .schemas import CreateChatRequest, SendMessageRequest, UpdateChatRequest

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TITLE_MAX_LENGTH = 50


def title_from_message(content: str) -> str:
    """Derive a chat title from the first prompt of the chat."""
    title = content[:TITLE_MAX_LENGTH]
    if len(content) > TITLE_MAX_LENGTH:
        title += "..."
    return title


def method_not_allowed(allowed: str) -> JsonResponse:
    return JsonResponse({'error': f'Only {allowed} requests are allowed'}, status=405)


def invalid_body(exc: ValidationError) -> JsonResponse:
    return JsonResponse(
        {
            'error': 'Invalid request body',
            'details': [err['msg'] for err in exc.errors()],
        },
        status=400,
    )


def chat_not_found() -> JsonResponse:
    return JsonResponse({'error': 'Chat not found'}, status=404)


async def get_chat(chat_id) -> Optional[Chat]:
    return await Chat.objects.filter(pk=chat_id).afirst()


def async_ratelimit(key: str, rate: str, method: str):
    """
    ``django_ratelimit``'s blocking check for ``async def`` views.

    The library decorator wraps views in a sync function, which hides the
    coroutine from Django. The check itself hits the database cache, so it
    runs in a worker thread.
    """

    def decorator(view):
        @wraps(view)
        async def _wrapped(request: HttpRequest, *args, **kwargs):
            limited = await sync_to_async(is_ratelimited)(
                request=request,
                fn=view,
                key=key,
                rate=rate,
                method=method,
                increment=True,
            )
            if limited:
                raise Ratelimited()
            return await view(request, *args, **kwargs)

        return _wrapped

    return decorator


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


async def chat_list(request: HttpRequest) -> JsonResponse:
    """
    ``GET`` lists every chat, most recently updated first.
    ``POST`` creates a chat and returns it with status 201.
    """
    if request.method == 'GET':
        chats = [chat.to_dict() async for chat in Chat.objects.all()]
        return JsonResponse(chats, safe=False)

    if request.method != 'POST':
        return method_not_allowed('GET and POST')

    try:
        payload = CreateChatRequest.model_validate_json(request.body or b'{}')
    except ValidationError as e:
        return invalid_body(e)

    chat = await Chat.objects.acreate(
        title=payload.title or 'New Chat',
        model=payload.model or default_model(),
    )
    logger.info("Created chat %s", chat.id)
    return JsonResponse(chat.to_dict(), status=201)


async def chat_detail(request: HttpRequest, chat_id) -> HttpResponse:
    """Fetch (``GET``), rename or switch model (``PATCH``), or ``DELETE`` a chat."""
    chat = await get_chat(chat_id)

    if request.method == 'DELETE':
        # Deleting a missing chat is not an error
        if chat is not None:
            await chat.adelete()
        return HttpResponse(status=204)

    if chat is None:
        return chat_not_found()

    if request.method == 'GET':
        return JsonResponse(chat.to_dict())

    if request.method != 'PATCH':
        return method_not_allowed('GET, PATCH and DELETE')

    try:
        payload = UpdateChatRequest.model_validate_json(request.body or b'{}')
    except ValidationError as e:
        return invalid_body(e)

    update_fields = ['updated_at']
    if payload.title is not None:
        chat.title = payload.title
        update_fields.append('title')
    if payload.model is not None:
        chat.model = payload.model
        update_fields.append('model')
    await chat.asave(update_fields=update_fields)

    return JsonResponse(chat.to_dict())


async def chat_messages(request: HttpRequest, chat_id) -> JsonResponse:
    """Return the messages of a chat in chronological order."""
    if request.method != 'GET':
        return method_not_allowed('GET')

    chat = await get_chat(chat_id)
    if chat is None:
        return chat_not_found()

    messages = [msg.to_dict() async for msg in chat.messages.order_by('created_at')]
    return JsonResponse(messages, safe=False)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@async_ratelimit(key='ip', rate='30/h', method='POST')
@async_ratelimit(key='ip', rate='300/d', method='POST')
async def send_message(request: HttpRequest) -> JsonResponse:
    """
    Store a user message, ask Perplexity for the reply and store that too.

    Args:
        request: JSON body ``{"chat_id": ..., "content": ..., "model": ...}``

    Returns:
        JsonResponse with both stored messages, or an ``error`` and status
        400/404/405/500
    """
    if request.method != 'POST':
        return method_not_allowed('POST')

    try:
        payload = SendMessageRequest.model_validate_json(request.body or b'{}')
    except ValidationError as e:
        return invalid_body(e)

    chat = await get_chat(payload.chat_id)
    if chat is None:
        return chat_not_found()

    is_first_turn = not await chat.messages.all().aexists()

    # ------------------------------------------------------------------
    # 1. Persist the prompt, then rebuild the history including it
    # ------------------------------------------------------------------
    # A prompt from a failed turn stays stored unanswered. prepare_messages
    # keeps only the first of consecutive user messages, so the next turn
    # sends that older prompt instead of this one.
    user_message = await Message.objects.acreate(
        chat=chat, role=Message.ROLE_USER, content=payload.content
    )
    conversation_history = [
        {'role': msg.role, 'content': msg.content}
        async for msg in chat.messages.order_by('created_at')
    ]

    # ------------------------------------------------------------------
    # 2. Ask Perplexity, rotating keys on quota errors
    # ------------------------------------------------------------------
    model = resolve_model(payload.model or chat.model)
    try:
        reply = await ai_service.send_message(
            conversation_history, payload.content, model
        )
    except KeyRotationError as e:
        logger.error("Chat %s: %s", chat.id, e)
        return JsonResponse({'error': str(e)}, status=500)

    # ------------------------------------------------------------------
    # 3. Persist the reply and touch the chat
    # ------------------------------------------------------------------
    assistant_message = await Message.objects.acreate(
        chat=chat,
        role=Message.ROLE_ASSISTANT,
        content=reply.content,
        citations=reply.citations,
    )

    update_fields = ['updated_at']
    if is_first_turn:
        chat.title = title_from_message(payload.content)
        update_fields.append('title')
    await chat.asave(update_fields=update_fields)

    return JsonResponse(
        {
            'user_message': user_message.to_dict(),
            'assistant_message': assistant_message.to_dict(),
        }
    )


# ---------------------------------------------------------------------------
# Keys & models
# ---------------------------------------------------------------------------


async def key_status(request: HttpRequest) -> JsonResponse:
    """Report which API key is current and which are exhausted."""
    if request.method != 'GET':
        return method_not_allowed('GET')

    return JsonResponse(await ai_service.get_key_status())


async def model_list(request: HttpRequest) -> JsonResponse:
    """Return the Perplexity models a chat can use."""
    if request.method != 'GET':
        return method_not_allowed('GET')

    return JsonResponse({'default': default_model(), 'models': PERPLEXITY_MODELS})
