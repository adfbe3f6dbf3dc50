"""
Realtime gateway: rooms of live connections, one room per conversation.

A room is a channel layer group. Joining adds the connection's channel to the
group and a broadcast is a single ``group_send``, so any process sharing the
layer (Redis in production) can reach every socket in the room, including
the HTTP workers that store messages. The layer resolves the group when the
event is sent; joins and leaves racing a broadcast never disturb it.

The gateway is not a source of truth. Delivery is fire-and-forget and at most
once per connection: nothing is acknowledged, queued for offline users, or
replayed. A client that missed a broadcast catches up through the paginated
message history.

By default joining a room does not re-check conversation membership; the
HTTP write path already authorized the sender. With strict membership
(``CHAT_GATEWAY_STRICT_MEMBERSHIP``) joins are checked, and every receiving
connection checks the current member list before forwarding an event.
"""

import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional, Set

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from django.conf import settings

logger = logging.getLogger(__name__)

# Channel layer message type handled by ChatConsumer.chat_event
CHAT_EVENT = "chat.event"

ROOM_PREFIX = "chat."
# Channel layer group names are limited to 100 ASCII letters, digits, '-', '_' and '.'
ROOM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,90}$")


def room_name(conversation_id) -> Optional[str]:
    """Group name of a conversation room, or None for an id no group can carry."""
    if not isinstance(conversation_id, str) or not ROOM_ID_PATTERN.match(conversation_id):
        return None
    return f"{ROOM_PREFIX}{conversation_id}"


@database_sync_to_async
def load_member_ids(conversation_id: str) -> Set[str]:
    from conversations.models import ConversationMember

    return set(
        ConversationMember.objects.filter(
            conversation__conversation_id=conversation_id
        ).values_list("user_id", flat=True)
    )


@database_sync_to_async
def load_conversation_ids_for(user_id: str) -> List[str]:
    from conversations.models import Conversation

    return list(
        Conversation.objects.filter(memberships__user_id=user_id).values_list(
            "conversation_id", flat=True
        )
    )


class RealtimeGateway:
    def __init__(
        self,
        channel_layer=None,
        strict_membership: Optional[bool] = None,
        member_lookup: Optional[Callable[[str], Awaitable[Set[str]]]] = None,
    ):
        self._channel_layer = channel_layer
        if strict_membership is None:
            strict_membership = settings.CHAT_GATEWAY_STRICT_MEMBERSHIP
        self.strict_membership = strict_membership
        self.member_lookup = member_lookup or load_member_ids
        # user_id -> channel names of that user's connections to this process
        self._connections: Dict[str, Set[str]] = {}

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    # Connections

    def register_connection(self, channel_name: str, user_id: str) -> bool:
        """Track an open connection. True when it is the user's first one."""
        channels = self._connections.setdefault(user_id, set())
        first = not channels
        channels.add(channel_name)
        return first

    def unregister_connection(self, channel_name: str, user_id: str) -> bool:
        """Forget a connection. True when it was the user's last one."""
        channels = self._connections.get(user_id)
        if not channels:
            return False
        channels.discard(channel_name)
        if channels:
            return False
        del self._connections[user_id]
        return True

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    # Rooms

    async def can_access(self, user_id: str, conversation_id: str) -> bool:
        if not self.strict_membership:
            return True
        return user_id in await self.member_lookup(conversation_id)

    async def join_room(self, channel_name: str, user_id: str, conversation_id: str) -> bool:
        group = room_name(conversation_id)
        if group is None:
            logger.info(f"Rejected join of {user_id} to malformed room {conversation_id!r}")
            return False
        if not await self.can_access(user_id, conversation_id):
            logger.info(f"Rejected join of {user_id} to room {conversation_id}: not a member")
            return False
        await self.channel_layer.group_add(group, channel_name)
        logger.debug(f"{user_id} joined room {conversation_id}")
        return True

    async def leave_room(self, channel_name: str, conversation_id: str) -> bool:
        """Remove the connection from the room. Leaving twice is harmless."""
        group = room_name(conversation_id)
        if group is None:
            return False
        await self.channel_layer.group_discard(group, channel_name)
        return True

    async def leave_rooms(self, channel_name: str, conversation_ids) -> None:
        for conversation_id in list(conversation_ids):
            try:
                await self.leave_room(channel_name, conversation_id)
            except Exception:
                logger.warning(f"Failed to leave room {conversation_id} for {channel_name}", exc_info=True)

    # Delivery

    async def broadcast_message(self, conversation_id: str, message: Dict) -> bool:
        return await self.broadcast(conversation_id, "receive_message", {"message": message})

    async def broadcast_presence(self, user_id: str, online: bool, conversation_ids: List[str]) -> int:
        """Announce presence to each room; returns how many rooms were reached."""
        event = "user_online" if online else "user_offline"
        reached = 0
        for conversation_id in conversation_ids:
            if await self.broadcast(conversation_id, event, {"user_id": user_id}, exclude_user=user_id):
                reached += 1
        return reached

    async def broadcast(
        self,
        conversation_id: str,
        event: str,
        payload: Dict,
        exclude_user: Optional[str] = None,
    ) -> bool:
        """
        Hand ``event`` to the channel layer for every connection in the room.

        An empty room is a no-op on the layer's side. Returns False when the
        layer refused the event; the failure is logged, never raised.
        """
        group = room_name(conversation_id)
        if group is None:
            return False

        envelope = {
            "type": CHAT_EVENT,
            "event": event,
            "conversation_id": conversation_id,
            **payload,
        }
        if exclude_user is not None:
            envelope["exclude_user"] = exclude_user

        try:
            await self.channel_layer.group_send(group, envelope)
        except Exception:
            logger.warning(f"Broadcast of {event} to room {conversation_id} failed", exc_info=True)
            return False
        return True

    async def should_deliver(self, user_id: str, event: Dict) -> bool:
        """Recipient-side filter applied by each connection to a room event."""
        if event.get("exclude_user") == user_id:
            return False
        if self.strict_membership:
            return await self.can_access(user_id, event.get("conversation_id"))
        return True


_gateway = None


def get_gateway() -> RealtimeGateway:
    """Get the process-wide gateway, creating it if needed."""
    global _gateway
    if _gateway is None:
        _gateway = RealtimeGateway()
    return _gateway
