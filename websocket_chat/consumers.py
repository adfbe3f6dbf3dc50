import json
import asyncio
import logging
import time

import bleach
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.utils import timezone

from users.models import User

from .gateway import get_gateway, load_conversation_ids_for

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncWebsocketConsumer):
    """
    One websocket connection of an authenticated user.

    Client frames are JSON objects with a ``type``: ``join_chat``,
    ``leave_chat``, ``send_message`` and ``heartbeat``. Events fanned out by
    the gateway arrive through ``chat_event`` and are forwarded verbatim once
    the gateway agrees this connection should see them. A connection may sit
    in any number of chat rooms at once.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = None
        self.gateway = get_gateway()
        self.heartbeat_task = None
        self.rooms = set()

    async def connect(self):
        self.user_id = self.scope.get('user_id')
        if not self.user_id:
            await self.close(code=4001)
            return

        await self.accept()

        self.heartbeat_task = asyncio.create_task(self.heartbeat_loop())

        if self.gateway.register_connection(self.channel_name, self.user_id):
            await self.announce_presence(online=True)

    async def disconnect(self, code):
        if self.heartbeat_task:
            self.heartbeat_task.cancel()

        if not self.user_id:
            return

        await self.gateway.leave_rooms(self.channel_name, self.rooms)
        self.rooms.clear()

        if self.gateway.unregister_connection(self.channel_name, self.user_id):
            await self.announce_presence(online=False)

    async def receive(self, text_data=None, bytes_data=None):
        if text_data is None:
            await self.send_error("Only text frames are supported")
            return

        try:
            if len(text_data) > settings.WEBSOCKET_MAX_MESSAGE_SIZE:
                await self.send_error("Message too large")
                return

            data = json.loads(text_data)
            if not isinstance(data, dict):
                await self.send_error("Invalid message format")
                return
            message_type = data.get('type')

            if message_type == 'join_chat':
                await self.handle_join_chat(data)
            elif message_type == 'leave_chat':
                await self.handle_leave_chat(data)
            elif message_type == 'send_message':
                await self.handle_send_message(data)
            elif message_type == 'heartbeat':
                await self.handle_heartbeat()
            else:
                await self.send_error("Unknown message type")

        except json.JSONDecodeError:
            await self.send_error("Invalid JSON format")
        except Exception:
            logger.exception(f"Failed to handle websocket frame from {self.user_id}")
            await self.send_error("Internal server error")

    async def handle_join_chat(self, data):
        conversation_id = self.get_conversation_id(data)
        if not conversation_id:
            await self.send_error("Chat ID required")
            return

        if not await self.gateway.join_room(self.channel_name, self.user_id, conversation_id):
            await self.send_error("Access denied to chat")
            return

        self.rooms.add(conversation_id)
        await self.send_json({'type': 'chat_joined', 'conversation_id': conversation_id})

    async def handle_leave_chat(self, data):
        conversation_id = self.get_conversation_id(data)
        if not conversation_id:
            await self.send_error("Chat ID required")
            return

        await self.gateway.leave_room(self.channel_name, conversation_id)
        self.rooms.discard(conversation_id)
        await self.send_json({'type': 'chat_left', 'conversation_id': conversation_id})

    async def handle_send_message(self, data):
        """
        Relay an already-persisted message to the room. Nothing is stored
        here; messages are written through the HTTP API.
        """
        conversation_id = self.get_conversation_id(data)
        message = data.get('message')
        if not conversation_id or not isinstance(message, dict):
            await self.send_error("Chat ID and message required")
            return

        if not await self.gateway.can_access(self.user_id, conversation_id):
            await self.send_error("Access denied to chat")
            return

        await self.gateway.broadcast_message(conversation_id, self.sanitize_payload(message))

    async def handle_heartbeat(self):
        await self.send_json({'type': 'heartbeat_response', 'timestamp': time.time()})

    async def chat_event(self, event):
        """Forward a gateway event to the client."""
        try:
            if not await self.gateway.should_deliver(self.user_id, event):
                return
            payload = {
                key: value for key, value in event.items() if key not in ('type', 'event', 'exclude_user')
            }
            await self.send_json({'type': event['event'], **payload})
        except Exception:
            logger.warning(f"Dropped {event.get('event')} for {self.user_id}", exc_info=True)

    async def heartbeat_loop(self):
        while True:
            try:
                await asyncio.sleep(settings.WEBSOCKET_HEARTBEAT_INTERVAL)
                await self.send_json({'type': 'heartbeat', 'timestamp': time.time()})
            except asyncio.CancelledError:
                break
            except Exception:
                logger.debug(f"Heartbeat to {self.user_id} stopped", exc_info=True)
                break

    async def announce_presence(self, online):
        await self.set_presence(online)
        if not settings.CHAT_PRESENCE_BROADCAST:
            return
        conversation_ids = await load_conversation_ids_for(self.user_id)
        await self.gateway.broadcast_presence(self.user_id, online, conversation_ids)

    async def send_json(self, content):
        await self.send(text_data=json.dumps(content))

    async def send_error(self, message):
        await self.send_json({'type': 'error', 'message': message})

    def get_conversation_id(self, data):
        conversation_id = data.get('conversation_id') or data.get('conversationId')
        if not isinstance(conversation_id, str):
            return None
        return conversation_id.strip() or None

    def sanitize_payload(self, value):
        """Strip markup from every string in a relayed payload."""
        if isinstance(value, str):
            return bleach.clean(value, tags=[], attributes={}, strip=True)
        if isinstance(value, dict):
            return {key: self.sanitize_payload(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.sanitize_payload(item) for item in value]
        return value

    @database_sync_to_async
    def set_presence(self, online):
        User.objects.filter(user_id=self.user_id).update(
            is_online=online, last_seen_at=timezone.now()
        )

