"""
WebSocket URL routing for movements app.

Defines WebSocket endpoints for real-time updates.
"""
from django.urls import re_path
from . import consumers

websocket_urlpatterns = [
    re_path(r'^ws/movements/$', consumers.MovementConsumer.as_asgi()),
]
