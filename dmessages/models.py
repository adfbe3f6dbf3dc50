from django.db import models


class Message(models.Model):
    """
    A chat message. Immutable once created: there is no edit or delete.
    Ordering is by ``created_at`` with ``id`` breaking ties.
    """

    KIND_TEXT = "text"
    KIND_SYSTEM = "system"
    KIND_CHOICES = [
        (KIND_TEXT, "Text"),
        (KIND_SYSTEM, "System"),
    ]

    conversation = models.ForeignKey(
        "conversations.Conversation", on_delete=models.CASCADE, related_name="messages"
    )
    sender_id = models.CharField(max_length=100)
    body = models.TextField(max_length=1000)
    kind = models.CharField(max_length=10, choices=KIND_CHOICES, default=KIND_TEXT)
    reply_to = models.ForeignKey(
        "self", on_delete=models.SET_NULL, null=True, blank=True, related_name="replies"
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "dmessages_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["conversation", "-created_at"], name="msg_conv_created_idx"),
        ]

    def __str__(self):
        return f"{self.sender_id}: {self.body[:50]}"

    @property
    def is_system(self):
        return self.kind == self.KIND_SYSTEM


class MessageReceipt(models.Model):
    """One row per (message, reader). Rows are only ever inserted."""

    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name="receipts")
    user_id = models.CharField(max_length=100)
    read_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "dmessages_messagereceipt"
        constraints = [
            models.UniqueConstraint(fields=["message", "user_id"], name="unique_message_receipt"),
        ]
        indexes = [
            models.Index(fields=["user_id"], name="receipt_user_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} read {self.message_id}"
