from rest_framework import serializers

from users.serializers import UserSummarySerializer


class MessageSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    conversation_id = serializers.CharField()
    sender = UserSummarySerializer()
    body = serializers.CharField()
    kind = serializers.CharField()
    created_at = serializers.DateTimeField()
    reply_to = serializers.IntegerField(allow_null=True)
    read_by = serializers.ListField(child=serializers.CharField())
    read_count = serializers.IntegerField()
    is_read = serializers.SerializerMethodField()

    def get_is_read(self, obj):
        """Whether the requesting user is among the readers"""
        user_id = self.context.get('user_id')
        return user_id is not None and user_id in obj.read_by


class MessagePageSerializer(serializers.Serializer):
    results = MessageSerializer(source='items', many=True)
    page = serializers.IntegerField()
    limit = serializers.IntegerField(source='page_size')
    total = serializers.IntegerField()
    has_next = serializers.BooleanField()
