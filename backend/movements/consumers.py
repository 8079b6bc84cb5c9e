"""
WebSocket consumers for real-time movement updates.

Each connection joins the channel group of every store its staff member is
assigned to, so it only hears about records those stores may see.
"""
import json
import logging
from urllib.parse import parse_qs

from channels.generic.websocket import AsyncWebsocketConsumer
from channels.db import database_sync_to_async

from .auth import staff_for_api_key
from .services.broadcast import store_group_name

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_staff_store_ids(api_key):
    """Resolve an API key to the staff member's store ids (async wrapper)."""
    staff = staff_for_api_key(api_key)
    if staff is None:
        return None
    return sorted(staff.store_ids)


class MovementConsumer(AsyncWebsocketConsumer):
    """
    WebSocket consumer for movement record updates.

    Clients connect to ws://host/ws/movements/ with an X-STAFF-KEY header
    (or ?key=... where headers cannot be set) to receive:
    {
        "type": "movement.created" | "movement.updated" | "movement.deleted",
        "record": {...serialized movement record...}
    }
    """

    def _api_key(self):
        for name, value in self.scope.get('headers', []):
            if name.lower() == b'x-staff-key':
                return value.decode()
        query = parse_qs(self.scope.get('query_string', b'').decode())
        return (query.get('key') or [None])[0]

    async def connect(self):
        """
        Authenticate and join one group per assigned store.
        Rejects the connection when the key is missing or invalid.
        """
        store_ids = await get_staff_store_ids(self._api_key())
        if store_ids is None:
            logger.warning("Rejected movement WebSocket: invalid or missing API key")
            await self.close(code=4401)
            return

        self.group_names = [store_group_name(store_id) for store_id in store_ids]
        if self.channel_layer:
            for group_name in self.group_names:
                await self.channel_layer.group_add(group_name, self.channel_name)
        else:
            logger.warning("Channel layer is None, WebSocket will work but no group messaging")

        await self.accept()

    async def disconnect(self, close_code):
        if self.channel_layer and hasattr(self, 'group_names'):
            for group_name in self.group_names:
                await self.channel_layer.group_discard(group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        # Broadcast-only channel
        pass

    async def _forward(self, event):
        await self.send(text_data=json.dumps({
            'type': event['type'],
            'record': event['record']
        }))

    async def movement_created(self, event):
        await self._forward(event)

    async def movement_updated(self, event):
        await self._forward(event)

    async def movement_deleted(self, event):
        await self._forward(event)
