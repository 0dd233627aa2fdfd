import json
from channels.generic.websocket import AsyncWebsocketConsumer

from beds.services.cache import UPDATES_GROUP


class BedUpdatesConsumer(AsyncWebsocketConsumer):
    GROUP = UPDATES_GROUP

    async def connect(self):
        await self.channel_layer.group_add(self.GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.GROUP, self.channel_name)

    async def inventory_refresh(self, event):
        # event: {"type": "inventory.refresh", "version": int, "ts": "...", "reason": "...", "keys": [...]}
        await self.send(json.dumps(event))
