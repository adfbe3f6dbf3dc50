import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from courier.request_utils import has_any, request_value

from .serializers import ConversationSerializer
from .services import ConversationService

logger = logging.getLogger(__name__)


class ConversationAPIView(APIView):
    """Base view: the requester is always the authenticated token user."""

    def get_service(self):
        return ConversationService()

    def render(self, service, conversation, user_id, status_code=status.HTTP_200_OK):
        view = service.to_view(conversation, viewer=user_id)
        serializer = ConversationSerializer(view, context={'user_id': user_id})
        return Response(serializer.data, status=status_code)


class ChatListView(ConversationAPIView):
    """List the requester's chats, most recent activity first"""

    def get(self, request):
        user_id = request.user.user_id
        service = self.get_service()
        views = service.to_views(service.list_for_user(user_id), viewer=user_id)
        serializer = ConversationSerializer(views, many=True, context={'user_id': user_id})
        return Response({
            'results': serializer.data,
            'total_count': len(views),
        })


class PrivateChatView(ConversationAPIView):
    """Open the 1:1 chat with another user, creating it on first contact"""

    def post(self, request):
        user_id = request.user.user_id
        other = request_value(request.data, 'userId', 'user_id')
        service = self.get_service()
        conversation, created = service.get_or_create_direct(user_id, other)
        status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
        return self.render(service, conversation, user_id, status_code)


class GroupChatView(ConversationAPIView):
    """Create a group chat owned by the requester"""

    def post(self, request):
        user_id = request.user.user_id
        data = request.data
        service = self.get_service()
        conversation = service.create_group(
            owner=user_id,
            title=request_value(data, 'title'),
            description=request_value(data, 'description'),
            initial_members=request_value(data, 'members', 'participants', default=[]),
            is_discoverable=request_value(data, 'isDiscoverable', 'is_discoverable', default=False),
        )
        return self.render(service, conversation, user_id, status.HTTP_201_CREATED)


class ChatDetailView(ConversationAPIView):

    def get(self, request, conversation_id):
        user_id = request.user.user_id
        service = self.get_service()
        conversation = service.get_for_member(user_id, conversation_id)
        return self.render(service, conversation, user_id)

    def put(self, request, conversation_id):
        """Update group details. Only fields present in the body change."""
        user_id = request.user.user_id
        data = request.data
        patch = {}
        if has_any(data, 'title'):
            patch['title'] = request_value(data, 'title')
        if has_any(data, 'description'):
            patch['description'] = request_value(data, 'description')
        if has_any(data, 'isDiscoverable', 'is_discoverable'):
            patch['is_discoverable'] = request_value(data, 'isDiscoverable', 'is_discoverable')

        service = self.get_service()
        conversation = service.update_group(user_id, conversation_id, patch)
        return self.render(service, conversation, user_id)


class ChatMembersView(ConversationAPIView):

    def post(self, request, conversation_id):
        user_id = request.user.user_id
        member = request_value(request.data, 'userId', 'user_id')
        service = self.get_service()
        conversation, added = service.add_member(user_id, conversation_id, member)
        status_code = status.HTTP_201_CREATED if added else status.HTTP_200_OK
        return self.render(service, conversation, user_id, status_code)


class ChatMemberDetailView(ConversationAPIView):

    def delete(self, request, conversation_id, member_id):
        user_id = request.user.user_id
        service = self.get_service()
        conversation, _ = service.remove_member(user_id, conversation_id, member_id)
        if not service.is_member(conversation, user_id):
            # Whoever is outside the chat after the call sees none of it.
            return Response(status=status.HTTP_204_NO_CONTENT)
        return self.render(service, conversation, user_id)
