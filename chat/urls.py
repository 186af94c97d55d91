"""
chat.urls module.

URL configuration for the chat JSON API (mounted under ``/api/``).
"""

from django.urls import path

from . import views

urlpatterns = [
    # Chat threads
    path('chats/', views.chat_list, name='chat_list'),
    path('chats/<uuid:chat_id>/', views.chat_detail, name='chat_detail'),
    path('chats/<uuid:chat_id>/messages/', views.chat_messages, name='chat_messages'),
    # Send a prompt to Perplexity
    path('messages/', views.send_message, name='send_message'),
    # Key rotation status
    path('keys/status/', views.key_status, name='key_status'),
    # Available Perplexity models
    path('models/', views.model_list, name='model_list'),
]
