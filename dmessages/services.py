"""
Message creation, paginated retrieval and read tracking.

Messages are immutable once stored. Read state lives in ``MessageReceipt``
rows that are only ever inserted, so ``read_by`` grows monotonically and
concurrent readers cannot lose each other's receipts.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db import connection, transaction
from django.db.models import Q
from django.utils import timezone

from courier.exceptions import ValidationError
from courier.user_directory import UserDirectory, UserSummary, get_user_directory

from .models import Message, MessageReceipt

logger = logging.getLogger(__name__)


@dataclass
class MessageView:
    id: int
    conversation_id: str
    sender: UserSummary
    body: str
    kind: str
    created_at: datetime
    reply_to: Optional[int] = None
    read_by: List[str] = field(default_factory=list)

    @property
    def read_count(self):
        return len(self.read_by)


@dataclass
class MessagePage:
    items: List[MessageView]
    page: int
    page_size: int
    total: int

    @property
    def has_next(self):
        return self.page * self.page_size < self.total


def clean_body(body):
    """Trim surrounding whitespace and enforce the 1..max length bound."""
    if body is None or not isinstance(body, str):
        raise ValidationError("Message content cannot be empty")
    body = body.strip()
    if not body:
        raise ValidationError("Message content cannot be empty")
    if len(body) > settings.CHAT_MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Message cannot exceed {settings.CHAT_MESSAGE_MAX_LENGTH} characters"
        )
    return body


def parse_positive_int(value, name, default):
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if number < 1:
        raise ValidationError(f"{name} must be at least 1")
    return number


class MessageService:
    def __init__(self, conversations=None, directory: Optional[UserDirectory] = None):
        self.directory = directory or get_user_directory()
        if conversations is None:
            from conversations.services import ConversationService

            conversations = ConversationService(directory=self.directory, messages=self)
        self.conversations = conversations

    def send(self, requester: str, conversation_id: str, body, reply_to=None) -> MessageView:
        conversation = self.conversations.get_for_member(requester, conversation_id)
        body = clean_body(body)
        reply = self._reply_target(conversation, reply_to)

        message = self._store(conversation, requester, body, Message.KIND_TEXT, reply)
        logger.debug(f"Message {message.id} sent to {conversation.conversation_id} by {requester}")
        return self.to_view(message)

    def post_system_message(self, actor: str, conversation, body: str) -> MessageView:
        """Append a service-generated notice. Never reachable from client input."""
        message = self._store(conversation, actor, body, Message.KIND_SYSTEM)
        return self.to_view(message)

    def list_page(self, requester: str, conversation_id: str, page=1, page_size=None) -> MessagePage:
        """
        Page 1 holds the newest ``page_size`` messages; each later page
        steps further back in time. Items inside a page are oldest first.

        Reading a page marks every message of the conversation sent by
        someone else as read by the requester, up to the newest message at
        the moment the read began.
        """
        conversation = self.conversations.get_for_member(requester, conversation_id)
        page = parse_positive_int(page, "page", 1)
        page_size = parse_positive_int(page_size, "limit", settings.CHAT_PAGE_SIZE)
        if page_size > settings.CHAT_MAX_PAGE_SIZE:
            raise ValidationError(f"limit cannot exceed {settings.CHAT_MAX_PAGE_SIZE}")

        messages = Message.objects.filter(conversation=conversation)
        newest = messages.order_by("-id").values_list("id", flat=True).first()
        total = messages.count()
        offset = (page - 1) * page_size
        window = list(
            messages.select_related("conversation")
            .order_by("-created_at", "-id")[offset:offset + page_size]
        )
        window.reverse()

        if newest is not None:
            self.mark_read(conversation, requester, up_to=newest)

        return MessagePage(
            items=self.to_views(window),
            page=page,
            page_size=page_size,
            total=total,
        )

    def mark_read(self, conversation, user_id: str, up_to: Optional[int] = None) -> int:
        """
        Add ``user_id`` to the readers of every unread message in the
        conversation not sent by them, and return how many were marked.

        The messages are picked and their receipts written by one
        ``INSERT ... SELECT ... ON CONFLICT DO NOTHING``, so concurrent reads
        and sends cannot split the two apart. ``up_to`` limits the receipts
        to messages with an id at or below it, the newest message that
        existed when the read began.
        """
        receipts = MessageReceipt._meta.db_table
        messages = Message._meta.db_table
        params = [user_id, connection.ops.adapt_datetimefield_value(timezone.now()), conversation.pk, user_id]
        bound = ""
        if up_to is not None:
            bound = "AND m.id <= %s"
            params.append(up_to)
        params.append(user_id)

        with connection.cursor() as cursor:
            cursor.execute(f"""
            INSERT INTO {receipts} (message_id, user_id, read_at)
            SELECT m.id, %s, %s
            FROM {messages} m
            WHERE m.conversation_id = %s
              AND m.sender_id <> %s
              {bound}
              AND NOT EXISTS (
                  SELECT 1 FROM {receipts} r WHERE r.message_id = m.id AND r.user_id = %s
              )
            ON CONFLICT (message_id, user_id) DO NOTHING
            """, params)
            marked = cursor.rowcount
        if marked:
            logger.debug(f"{user_id} read {marked} messages in {conversation.conversation_id}")
        return max(marked, 0)

    def unread_count(self, conversation, user_id: str) -> int:
        return self._unread(conversation, user_id).count()

    def _unread(self, conversation, user_id):
        return (
            Message.objects.filter(conversation=conversation)
            .exclude(sender_id=user_id)
            .exclude(receipts__user_id=user_id)
        )

    def _reply_target(self, conversation, reply_to) -> Optional[Message]:
        if reply_to is None or reply_to == "":
            return None
        try:
            reply_id = int(reply_to)
        except (TypeError, ValueError):
            raise ValidationError("replyTarget must be a message id")
        reply = Message.objects.filter(id=reply_id, conversation=conversation).first()
        if reply is None:
            raise ValidationError("replyTarget must reference a message in this chat")
        return reply

    def _store(self, conversation, sender_id: str, body: str, kind: str, reply: Optional[Message] = None) -> Message:
        from conversations.models import Conversation

        with transaction.atomic():
            message = Message.objects.create(
                conversation=conversation,
                sender_id=sender_id,
                body=body,
                kind=kind,
                reply_to=reply,
            )
            MessageReceipt.objects.create(message=message, user_id=sender_id)
            # Only move the pointer forward; a slower concurrent send must not
            # overwrite a newer last message.
            Conversation.objects.filter(pk=conversation.pk).filter(
                Q(last_message_at__isnull=True) | Q(last_message_at__lte=message.created_at)
            ).update(
                last_message=message,
                last_message_at=message.created_at,
                updated_at=message.created_at,
            )
        return message

    # View models

    def to_view(self, message: Message) -> MessageView:
        return self.to_views([message])[0]

    def to_views(self, messages: List[Message]) -> List[MessageView]:
        if not messages:
            return []

        ids = [m.id for m in messages]
        readers: Dict[int, List[str]] = {message_id: [] for message_id in ids}
        receipts = (
            MessageReceipt.objects.filter(message_id__in=ids)
            .order_by("read_at", "id")
            .values_list("message_id", "user_id")
        )
        for message_id, user_id in receipts:
            readers[message_id].append(user_id)

        senders = self.directory.resolve(sorted({m.sender_id for m in messages}))

        return [
            MessageView(
                id=m.id,
                conversation_id=m.conversation.conversation_id,
                sender=senders[m.sender_id],
                body=m.body,
                kind=m.kind,
                created_at=m.created_at,
                reply_to=m.reply_to_id,
                read_by=readers[m.id],
            )
            for m in messages
        ]

    def views_for_ids(self, message_ids: Iterable[int]) -> Dict[int, MessageView]:
        ids = [i for i in message_ids if i is not None]
        if not ids:
            return {}
        messages = list(Message.objects.filter(id__in=ids).select_related("conversation"))
        return {view.id: view for view in self.to_views(messages)}

