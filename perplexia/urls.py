"""
perplexia.urls module.

Root URL configuration: the admin site plus the chat JSON API.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/', include('chat.urls')),
]
