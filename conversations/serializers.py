from rest_framework import serializers

from dmessages.serializers import MessageSerializer
from users.serializers import UserSummarySerializer


class ConversationSerializer(serializers.Serializer):
    conversation_id = serializers.CharField()
    kind = serializers.CharField()
    title = serializers.CharField(allow_blank=True)
    description = serializers.CharField(allow_blank=True)
    owner = UserSummarySerializer(allow_null=True)
    is_discoverable = serializers.BooleanField()
    members = UserSummarySerializer(many=True)
    last_message = MessageSerializer(allow_null=True)
    last_message_at = serializers.DateTimeField(allow_null=True)
    unread_count = serializers.IntegerField(allow_null=True)
    created_at = serializers.DateTimeField()
    updated_at = serializers.DateTimeField()
