from django.db import IntegrityError, transaction
from django.test import TestCase

from conversations.models import Conversation, ConversationMember, direct_key_for, generate_conversation_id
from dmessages.models import Message, MessageReceipt


class ConversationModelTest(TestCase):
    def setUp(self):
        self.conversation = Conversation.objects.create(
            kind=Conversation.KIND_DIRECT,
            direct_key=direct_key_for("user1", "user2"),
        )
        ConversationMember.objects.create(conversation=self.conversation, user_id="user1")
        ConversationMember.objects.create(conversation=self.conversation, user_id="user2")

    def test_conversation_creation(self):
        """A conversation gets a public id and timestamps"""
        self.assertTrue(self.conversation.conversation_id.startswith("conv_"))
        self.assertIsNotNone(self.conversation.created_at)
        self.assertIsNotNone(self.conversation.updated_at)
        self.assertIsNone(self.conversation.last_message)

    def test_conversation_str_representation(self):
        self.assertEqual(str(self.conversation), f"Conversation {self.conversation.conversation_id}")
        group = Conversation.objects.create(kind=Conversation.KIND_GROUP, title="Team", owner_id="user1")
        self.assertEqual(str(group), f"Group Team ({group.conversation_id})")

    def test_direct_key_is_order_independent(self):
        self.assertEqual(direct_key_for("b", "a"), direct_key_for("a", "b"))
        self.assertEqual(direct_key_for("a", "b"), "a:b")

    def test_direct_key_is_unique(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Conversation.objects.create(kind=Conversation.KIND_DIRECT, direct_key="user1:user2")

    def test_groups_have_no_direct_key(self):
        Conversation.objects.create(kind=Conversation.KIND_GROUP, title="One")
        Conversation.objects.create(kind=Conversation.KIND_GROUP, title="Two")
        self.assertEqual(Conversation.objects.filter(direct_key__isnull=True).count(), 2)

    def test_membership_is_unique(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                ConversationMember.objects.create(conversation=self.conversation, user_id="user1")

    def test_membership_helpers(self):
        self.assertEqual(self.conversation.member_ids(), ["user1", "user2"])
        self.assertTrue(self.conversation.is_member("user1"))
        self.assertFalse(self.conversation.is_member("user3"))
        self.assertFalse(self.conversation.is_owner("user1"))

    def test_generated_ids_differ(self):
        self.assertNotEqual(generate_conversation_id(), generate_conversation_id())


class MessageModelTest(TestCase):
    def setUp(self):
        self.conversation = Conversation.objects.create(kind=Conversation.KIND_GROUP, title="Team", owner_id="user1")

    def test_message_str_and_kind(self):
        message = Message.objects.create(conversation=self.conversation, sender_id="user1", body="Test message")
        self.assertEqual(str(message), "user1: Test message")
        self.assertEqual(message.kind, Message.KIND_TEXT)
        self.assertFalse(message.is_system)

    def test_receipt_is_unique_per_reader(self):
        message = Message.objects.create(conversation=self.conversation, sender_id="user1", body="hi")
        MessageReceipt.objects.create(message=message, user_id="user2")
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                MessageReceipt.objects.create(message=message, user_id="user2")

    def test_deleting_reply_target_keeps_reply(self):
        original = Message.objects.create(conversation=self.conversation, sender_id="user1", body="q")
        reply = Message.objects.create(conversation=self.conversation, sender_id="user2", body="a", reply_to=original)

        original.delete()
        reply.refresh_from_db()

        self.assertIsNone(reply.reply_to)
