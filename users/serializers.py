from rest_framework import serializers


class UserSummarySerializer(serializers.Serializer):
    """Display identity of a user as embedded in chats and messages."""
    user_id = serializers.CharField()
    username = serializers.CharField()
    avatar_url = serializers.CharField(allow_null=True)
    is_online = serializers.BooleanField()
