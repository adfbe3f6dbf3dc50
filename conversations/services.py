"""
Conversation lifecycle: private 1:1 dedup, group creation and membership,
and the membership predicates the message service authorizes with.

Every operation re-reads the rows it needs; nothing is cached between
calls. Group mutations append a system message through ``MessageService``
after the mutation is committed. That append may fail on its own: the
failure is logged and the committed change stands.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count
from django.db.models.functions import Coalesce

from courier.exceptions import Forbidden, InvalidOperation, NotFound, ValidationError
from courier.user_directory import UserDirectory, UserSummary, get_user_directory

from .models import Conversation, ConversationMember, direct_key_for

logger = logging.getLogger(__name__)

UPDATABLE_GROUP_FIELDS = ("title", "description", "is_discoverable")


@dataclass
class ConversationView:
    conversation_id: str
    kind: str
    members: List[UserSummary]
    created_at: datetime
    updated_at: datetime
    title: str = ""
    description: str = ""
    owner: Optional[UserSummary] = None
    is_discoverable: bool = False
    last_message: Optional[object] = None
    last_message_at: Optional[datetime] = None
    unread_count: Optional[int] = None
    member_ids: List[str] = field(default_factory=list)


def clean_title(value):
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError("Please provide a group title")
    value = value.strip()
    if len(value) > settings.CHAT_GROUP_TITLE_MAX_LENGTH:
        raise ValidationError(
            f"Group title cannot exceed {settings.CHAT_GROUP_TITLE_MAX_LENGTH} characters"
        )
    return value


def clean_description(value):
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("Group description must be a string")
    if len(value) > settings.CHAT_GROUP_DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Group description cannot exceed {settings.CHAT_GROUP_DESCRIPTION_MAX_LENGTH} characters"
        )
    return value


def clean_flag(value, name):
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a boolean")
    return value


def clean_user_id(value, name="userId"):
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


class ConversationService:
    def __init__(self, directory: Optional[UserDirectory] = None, messages=None):
        self.directory = directory or get_user_directory()
        self._messages = messages

    @property
    def messages(self):
        if self._messages is None:
            from dmessages.services import MessageService

            self._messages = MessageService(conversations=self, directory=self.directory)
        return self._messages

    # Predicates

    def is_member(self, conversation: Conversation, user_id: str) -> bool:
        return conversation.is_member(user_id)

    def is_owner(self, conversation: Conversation, user_id: str) -> bool:
        return conversation.is_owner(user_id)

    # Lookups

    def get_conversation(self, conversation_id: str) -> Conversation:
        try:
            return Conversation.objects.get(conversation_id=conversation_id)
        except Conversation.DoesNotExist:
            raise NotFound("Chat not found")

    def get_for_member(self, requester: str, conversation_id: str) -> Conversation:
        """Existence is checked before membership: NotFound, then Forbidden."""
        conversation = self.get_conversation(conversation_id)
        if not self.is_member(conversation, requester):
            raise Forbidden("Not authorized to access this chat")
        return conversation

    def list_for_user(self, requester: str) -> List[Conversation]:
        """Conversations the requester belongs to, most recent activity first."""
        return list(
            Conversation.objects.filter(memberships__user_id=requester)
            .annotate(activity_at=Coalesce("last_message_at", "created_at"))
            .order_by("-activity_at", "-id")
        )

    def unread_count(self, conversation: Conversation, user_id: str) -> int:
        return self.messages.unread_count(conversation, user_id)

    # Direct conversations

    def get_or_create_direct(self, requester: str, other_member: str) -> Tuple[Conversation, bool]:
        """
        Return the direct conversation between the two users, creating it on
        first contact. The second value tells whether it was created.
        """
        other_member = clean_user_id(other_member)
        if requester == other_member:
            raise InvalidOperation("Cannot create chat with yourself")
        if not self.directory.exists(other_member):
            raise NotFound("User not found")

        key = direct_key_for(requester, other_member)
        existing = Conversation.objects.filter(direct_key=key).first()
        if existing is not None:
            return existing, False

        try:
            with transaction.atomic():
                conversation = Conversation.objects.create(
                    kind=Conversation.KIND_DIRECT,
                    direct_key=key,
                )
                ConversationMember.objects.bulk_create([
                    ConversationMember(conversation=conversation, user_id=requester),
                    ConversationMember(conversation=conversation, user_id=other_member),
                ])
        except IntegrityError:
            # A concurrent request created the pair first.
            logger.info(f"Direct conversation {key} created concurrently, re-reading")
            return Conversation.objects.get(direct_key=key), False

        logger.info(f"Created direct conversation {conversation.conversation_id} for {key}")
        return conversation, True

    # Groups

    def create_group(
        self,
        owner: str,
        title,
        description=None,
        initial_members: Iterable[str] = (),
        is_discoverable=False,
    ) -> Conversation:
        title = clean_title(title)
        description = clean_description(description)
        is_discoverable = clean_flag(is_discoverable, "isDiscoverable")
        if initial_members is None:
            initial_members = []
        if isinstance(initial_members, str) or not isinstance(initial_members, (list, tuple, set)):
            raise ValidationError("members must be a list of user ids")

        members = []
        for user_id in initial_members:
            user_id = clean_user_id(user_id, "members")
            if user_id not in members:
                members.append(user_id)
        if owner not in members:
            members.append(owner)

        others = [uid for uid in members if uid != owner]
        unknown = set(others) - self.directory.existing_ids(others)
        if unknown:
            raise NotFound(f"User not found: {', '.join(sorted(unknown))}")

        with transaction.atomic():
            conversation = Conversation.objects.create(
                kind=Conversation.KIND_GROUP,
                title=title,
                description=description,
                owner_id=owner,
                is_discoverable=is_discoverable,
            )
            ConversationMember.objects.bulk_create([
                ConversationMember(conversation=conversation, user_id=uid) for uid in members
            ])

        logger.info(
            f"Created group {conversation.conversation_id} owned by {owner} with {len(members)} members"
        )
        self._announce(owner, conversation, f"{self.directory.display_name(owner)} created the group")
        return conversation

    def update_group(self, requester: str, conversation_id: str, patch: Dict) -> Conversation:
        """Apply only the fields present in ``patch``; others are left untouched."""
        conversation = self._get_group_for_owner(requester, conversation_id)

        changed = []
        if "title" in patch:
            conversation.title = clean_title(patch["title"])
            changed.append("title")
        if "description" in patch:
            conversation.description = clean_description(patch["description"])
            changed.append("description")
        if "is_discoverable" in patch:
            conversation.is_discoverable = clean_flag(patch["is_discoverable"], "isDiscoverable")
            changed.append("is_discoverable")

        if changed:
            conversation.save(update_fields=changed + ["updated_at"])
            logger.info(f"Group {conversation.conversation_id} updated by {requester}: {', '.join(changed)}")
        return conversation

    def add_member(self, requester: str, conversation_id: str, user_id) -> Tuple[Conversation, bool]:
        """Idempotent add. The second value is False when the user was already a member."""
        user_id = clean_user_id(user_id)
        conversation = self._get_group_for_owner(requester, conversation_id)
        if not self.directory.exists(user_id):
            raise NotFound("User not found")

        _, created = ConversationMember.objects.get_or_create(
            conversation=conversation, user_id=user_id
        )
        if created:
            logger.info(f"{user_id} added to group {conversation.conversation_id} by {requester}")
            self._announce(
                requester, conversation, f"{self.directory.display_name(user_id)} was added to the group"
            )
        return conversation, created

    def remove_member(self, requester: str, conversation_id: str, user_id) -> Tuple[Conversation, bool]:
        """
        Idempotent remove. Owner-gated except for self-removal; the owner
        can never be removed, whoever asks.
        """
        user_id = clean_user_id(user_id)
        conversation = self.get_conversation(conversation_id)
        if not conversation.is_group:
            raise InvalidOperation("This operation is only allowed for group chats")
        if conversation.owner_id == user_id:
            raise InvalidOperation("Cannot remove group owner")
        if not self.is_owner(conversation, requester) and requester != user_id:
            raise Forbidden("Not authorized to remove participants")

        deleted, _ = ConversationMember.objects.filter(
            conversation=conversation, user_id=user_id
        ).delete()
        if deleted:
            logger.info(f"{user_id} removed from group {conversation.conversation_id} by {requester}")
            name = self.directory.display_name(user_id)
            if requester == user_id:
                notice = f"{name} left the group"
            else:
                notice = f"{name} was removed from the group"
            self._announce(requester, conversation, notice)
        return conversation, bool(deleted)

    def _get_group_for_owner(self, requester: str, conversation_id: str) -> Conversation:
        conversation = self.get_conversation(conversation_id)
        if not conversation.is_group:
            raise InvalidOperation("This operation is only allowed for group chats")
        if not self.is_owner(conversation, requester):
            raise Forbidden("Only the group owner can do this")
        return conversation

    def _announce(self, actor: str, conversation: Conversation, body: str):
        try:
            self.messages.post_system_message(actor, conversation, body)
        except Exception:
            logger.exception(
                f"Failed to append system message to {conversation.conversation_id}; keeping the change"
            )
            return
        conversation.refresh_from_db(fields=["last_message", "last_message_at", "updated_at"])

    # View models

    def to_view(self, conversation: Conversation, viewer: Optional[str] = None) -> ConversationView:
        return self.to_views([conversation], viewer)[0]

    def to_views(self, conversations: List[Conversation], viewer: Optional[str] = None) -> List[ConversationView]:
        """Resolve members, owner, last message and unread counts in batches."""
        if not conversations:
            return []

        pks = [c.pk for c in conversations]
        member_map = {pk: [] for pk in pks}
        rows = (
            ConversationMember.objects.filter(conversation_id__in=pks)
            .order_by("joined_at", "id")
            .values_list("conversation_id", "user_id")
        )
        for pk, user_id in rows:
            member_map[pk].append(user_id)

        user_ids = {uid for ids in member_map.values() for uid in ids}
        user_ids.update(c.owner_id for c in conversations if c.owner_id)
        summaries = self.directory.resolve(sorted(user_ids))

        last_ids = [c.last_message_id for c in conversations if c.last_message_id]
        last_messages = self.messages.views_for_ids(last_ids)

        unread = {}
        if viewer is not None:
            unread = self._unread_counts(pks, viewer)

        views = []
        for conversation in conversations:
            ids = member_map[conversation.pk]
            views.append(ConversationView(
                conversation_id=conversation.conversation_id,
                kind=conversation.kind,
                members=[summaries[uid] for uid in ids],
                member_ids=ids,
                title=conversation.title,
                description=conversation.description,
                owner=summaries.get(conversation.owner_id) if conversation.owner_id else None,
                is_discoverable=conversation.is_discoverable,
                last_message=last_messages.get(conversation.last_message_id),
                last_message_at=conversation.last_message_at,
                unread_count=unread.get(conversation.pk, 0) if viewer is not None else None,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
            ))
        return views

    def _unread_counts(self, conversation_pks, user_id) -> Dict[int, int]:
        from dmessages.models import Message

        rows = (
            Message.objects.filter(conversation_id__in=conversation_pks)
            .exclude(sender_id=user_id)
            .exclude(receipts__user_id=user_id)
            .order_by()
            .values("conversation_id")
            .annotate(total=Count("id"))
        )
        return {row["conversation_id"]: row["total"] for row in rows}
