import uuid

from django.db import models


def generate_conversation_id():
    return f"conv_{uuid.uuid4().hex}"


def direct_key_for(user_a, user_b):
    """Order-independent key identifying the direct conversation of a pair."""
    low, high = sorted([str(user_a), str(user_b)])
    return f"{low}:{high}"


class Conversation(models.Model):
    KIND_DIRECT = 'direct'
    KIND_GROUP = 'group'
    KIND_CHOICES = [
        (KIND_DIRECT, 'Direct'),
        (KIND_GROUP, 'Group'),
    ]

    conversation_id = models.CharField(max_length=100, unique=True, default=generate_conversation_id)
    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    # Set only for direct conversations; unique so a pair maps to one row.
    direct_key = models.CharField(max_length=210, unique=True, null=True, blank=True)
    title = models.CharField(max_length=100, blank=True)
    description = models.TextField(max_length=500, blank=True)
    owner_id = models.CharField(max_length=100, null=True, blank=True)
    is_discoverable = models.BooleanField(default=False)
    last_message = models.ForeignKey(
        'dmessages.Message', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    last_message_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'conversations_conversation'
        indexes = [
            models.Index(fields=['last_message_at'], name='conv_last_message_at_idx'),
        ]

    def __str__(self):
        if self.is_group:
            return f"Group {self.title} ({self.conversation_id})"
        return f"Conversation {self.conversation_id}"

    @property
    def is_group(self):
        return self.kind == self.KIND_GROUP

    @property
    def is_direct(self):
        return self.kind == self.KIND_DIRECT

    def member_ids(self):
        """Member ids in the order they joined."""
        return list(
            self.memberships.order_by('joined_at', 'id').values_list('user_id', flat=True)
        )

    def is_member(self, user_id):
        return self.memberships.filter(user_id=user_id).exists()

    def is_owner(self, user_id):
        return self.is_group and self.owner_id is not None and self.owner_id == user_id


class ConversationMember(models.Model):
    conversation = models.ForeignKey(
        Conversation, on_delete=models.CASCADE, related_name='memberships'
    )
    user_id = models.CharField(max_length=100)
    joined_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'conversations_conversationmember'
        constraints = [
            models.UniqueConstraint(
                fields=['conversation', 'user_id'], name='unique_conversation_member'
            ),
        ]
        indexes = [
            models.Index(fields=['user_id'], name='conv_member_user_idx'),
        ]

    def __str__(self):
        return f"{self.user_id} in {self.conversation.conversation_id}"
