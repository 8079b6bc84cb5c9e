"""
ASGI entrypoint for the store movements backoffice.

HTTP goes to Django; WebSocket connections under /ws/movements/ go to the
movement consumer, which authenticates with the staff API key itself.
Browser origins are checked against ALLOWED_HOSTS.
"""

import os
from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backoffice.settings')

# Apps must be loaded before the consumers import models
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter
from channels.security.websocket import AllowedHostsOriginValidator
from movements.routing import websocket_urlpatterns

application = ProtocolTypeRouter({
    'http': django_asgi_app,
    'websocket': AllowedHostsOriginValidator(
        URLRouter(websocket_urlpatterns)
    ),
})
