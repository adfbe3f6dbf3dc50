import logging

from asgiref.sync import async_to_sync
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from courier.request_utils import request_value
from websocket_chat.gateway import get_gateway

from .serializers import MessagePageSerializer, MessageSerializer
from .services import MessageService

logger = logging.getLogger(__name__)


class ChatMessagesView(APIView):
    """Read a chat's history page by page, or post a new message to it"""

    def get_service(self):
        return MessageService()

    def get(self, request, conversation_id):
        user_id = request.user.user_id
        page = self.get_service().list_page(
            user_id,
            conversation_id,
            page=request.query_params.get('page'),
            page_size=request.query_params.get('limit'),
        )
        serializer = MessagePageSerializer(page, context={'user_id': user_id})
        return Response(serializer.data)

    def post(self, request, conversation_id):
        user_id = request.user.user_id
        data = request.data
        message = self.get_service().send(
            user_id,
            conversation_id,
            request_value(data, 'body'),
            reply_to=request_value(data, 'replyTarget', 'reply_to'),
        )
        payload = MessageSerializer(message, context={'user_id': user_id}).data

        if settings.CHAT_BROADCAST_ON_SEND:
            self.broadcast(message.conversation_id, payload)

        return Response(payload, status=status.HTTP_201_CREATED)

    def broadcast(self, conversation_id, payload):
        """Push the stored message to live connections. Best effort only."""
        try:
            async_to_sync(get_gateway().broadcast_message)(conversation_id, dict(payload))
        except Exception:
            logger.exception(f"Realtime broadcast to {conversation_id} failed; message is stored")
