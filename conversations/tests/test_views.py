from django.core.cache import cache
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from conversations.models import Conversation
from conversations.services import ConversationService
from courier.jwt_utils import generate_test_token
from dmessages.models import Message
from users.models import User


class ChatAPITestCase(APITestCase):
    def setUp(self):
        cache.clear()
        User.objects.create(user_id="u1", username="alice")
        User.objects.create(user_id="u2", username="bob")
        User.objects.create(user_id="u3", username="carol")
        self.service = ConversationService()
        self.login("u1")

    def login(self, user_id):
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {generate_test_token(user_id)}")

    def detail_url(self, conversation_id):
        return reverse('conversations:chat-detail', kwargs={'conversation_id': conversation_id})

    def members_url(self, conversation_id):
        return reverse('conversations:chat-members', kwargs={'conversation_id': conversation_id})

    def member_url(self, conversation_id, member_id):
        return reverse(
            'conversations:chat-member-detail',
            kwargs={'conversation_id': conversation_id, 'member_id': member_id},
        )


class AuthenticationRequiredTest(ChatAPITestCase):
    def test_missing_token(self):
        self.client.credentials()
        response = self.client.get(reverse('conversations:chat-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['success'])

    def test_invalid_token(self):
        self.client.credentials(HTTP_AUTHORIZATION="Bearer not-a-token")
        response = self.client.get(reverse('conversations:chat-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_wrong_scheme(self):
        self.client.credentials(HTTP_AUTHORIZATION=f"Token {generate_test_token('u1')}")
        response = self.client.get(reverse('conversations:chat-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_expired_token(self):
        token = generate_test_token("u1", expires_in_hours=-1)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        response = self.client.get(reverse('conversations:chat-list'))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class PrivateChatViewTest(ChatAPITestCase):
    url = '/chats/private'

    def test_first_contact_creates_then_returns_existing(self):
        created = self.client.post(self.url, {'userId': 'u2'}, format='json')
        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        self.assertEqual(created.data['kind'], 'direct')
        self.assertCountEqual([m['user_id'] for m in created.data['members']], ['u1', 'u2'])

        again = self.client.post(self.url, {'user_id': 'u2'}, format='json')
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data['conversation_id'], created.data['conversation_id'])

        self.login("u2")
        reverse_order = self.client.post(self.url, {'userId': 'u1'}, format='json')
        self.assertEqual(reverse_order.status_code, status.HTTP_200_OK)
        self.assertEqual(reverse_order.data['conversation_id'], created.data['conversation_id'])

    def test_chat_with_self(self):
        response = self.client.post(self.url, {'userId': 'u1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'invalid_operation')

    def test_unknown_user(self):
        response = self.client.post(self.url, {'userId': 'ghost'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['message'], 'User not found')

    def test_missing_user_id(self):
        response = self.client.post(self.url, {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'validation_error')


class GroupChatViewTest(ChatAPITestCase):
    url = '/chats/group'

    def test_create_group(self):
        response = self.client.post(self.url, {
            'title': 'Book club',
            'description': 'Monthly reads',
            'members': ['u2', 'u3'],
            'isDiscoverable': True,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['kind'], 'group')
        self.assertEqual(response.data['title'], 'Book club')
        self.assertTrue(response.data['is_discoverable'])
        self.assertEqual(response.data['owner']['user_id'], 'u1')
        self.assertEqual([m['user_id'] for m in response.data['members']], ['u2', 'u3', 'u1'])
        self.assertEqual(response.data['last_message']['kind'], 'system')
        self.assertEqual(response.data['last_message']['body'], 'alice created the group')

    def test_title_required(self):
        response = self.client.post(self.url, {'members': ['u2']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Conversation.objects.count(), 0)

    def test_unknown_member(self):
        response = self.client.post(self.url, {'title': 'Team', 'members': ['ghost']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class ChatListViewTest(ChatAPITestCase):
    def test_lists_only_own_chats_with_unread_counts(self):
        mine, _ = self.service.get_or_create_direct("u1", "u2")
        self.service.get_or_create_direct("u2", "u3")
        self.service.messages.send("u2", mine.conversation_id, "hey")

        response = self.client.get(reverse('conversations:chat-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_count'], 1)
        chat = response.data['results'][0]
        self.assertEqual(chat['conversation_id'], mine.conversation_id)
        self.assertEqual(chat['unread_count'], 1)
        self.assertEqual(chat['last_message']['body'], 'hey')
        self.assertFalse(chat['last_message']['is_read'])

    def test_most_recent_activity_first(self):
        older, _ = self.service.get_or_create_direct("u1", "u2")
        newer, _ = self.service.get_or_create_direct("u1", "u3")
        self.service.messages.send("u1", older.conversation_id, "bump")

        response = self.client.get(reverse('conversations:chat-list'))

        self.assertEqual(
            [c['conversation_id'] for c in response.data['results']],
            [older.conversation_id, newer.conversation_id],
        )


class ChatDetailViewTest(ChatAPITestCase):
    def setUp(self):
        super().setUp()
        self.group = self.service.create_group("u1", "Team", "desc", ["u2"])

    def test_member_can_view(self):
        self.login("u2")
        response = self.client.get(self.detail_url(self.group.conversation_id))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['title'], 'Team')

    def test_non_member_is_forbidden(self):
        self.login("u3")
        response = self.client.get(self.detail_url(self.group.conversation_id))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error']['code'], 'forbidden')

    def test_unknown_chat(self):
        response = self.client.get(self.detail_url('conv_missing'))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_partial_update(self):
        response = self.client.put(
            self.detail_url(self.group.conversation_id), {'isDiscoverable': True}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['title'], 'Team')
        self.assertEqual(response.data['description'], 'desc')
        self.assertTrue(response.data['is_discoverable'])

    def test_update_by_member_is_forbidden(self):
        self.login("u2")
        response = self.client.put(
            self.detail_url(self.group.conversation_id), {'title': 'Mine'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_update_validation(self):
        response = self.client.put(
            self.detail_url(self.group.conversation_id), {'description': 'x' * 501}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ChatMembersViewTest(ChatAPITestCase):
    def setUp(self):
        super().setUp()
        self.group = self.service.create_group("u1", "Team", initial_members=["u2"])

    def test_add_member_then_again(self):
        url = self.members_url(self.group.conversation_id)

        first = self.client.post(url, {'userId': 'u3'}, format='json')
        second = self.client.post(url, {'userId': 'u3'}, format='json')

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual([m['user_id'] for m in second.data['members']], ['u2', 'u1', 'u3'])

    def test_add_member_to_direct_chat(self):
        direct, _ = self.service.get_or_create_direct("u1", "u2")
        response = self.client.post(self.members_url(direct.conversation_id), {'userId': 'u3'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_remove_owner_is_rejected(self):
        response = self.client.delete(self.member_url(self.group.conversation_id, 'u1'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['message'], 'Cannot remove group owner')

    def test_owner_removes_member(self):
        response = self.client.delete(self.member_url(self.group.conversation_id, 'u2'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([m['user_id'] for m in response.data['members']], ['u1'])

    def test_member_leaves(self):
        self.login("u2")
        response = self.client.delete(self.member_url(self.group.conversation_id, 'u2'))

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(response.content)
        self.assertEqual(
            self.client.get(self.detail_url(self.group.conversation_id)).status_code,
            status.HTTP_403_FORBIDDEN,
        )

    def test_outsider_leaving_sees_nothing(self):
        self.service.messages.send("u1", self.group.conversation_id, "private plans")
        before = Message.objects.filter(conversation=self.group).count()
        self.login("u3")

        response = self.client.delete(self.member_url(self.group.conversation_id, 'u3'))

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertNotIn(b'private plans', response.content)
        self.assertFalse(response.content)
        self.assertEqual(Message.objects.filter(conversation=self.group).count(), before)

    def test_outsider_cannot_add_members(self):
        self.login("u3")
        response = self.client.post(self.members_url(self.group.conversation_id), {'userId': 'u3'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(self.group.is_member("u3"))

    def test_member_cannot_remove_others(self):
        self.service.add_member("u1", self.group.conversation_id, "u3")
        self.login("u2")
        response = self.client.delete(self.member_url(self.group.conversation_id, 'u3'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class TokenOnlyUsersTest(APITestCase):
    """Users known only from their tokens, with nothing seeded in the users table."""

    def setUp(self):
        cache.clear()

    def login(self, user_id, **claims):
        token = generate_test_token(user_id, **claims)
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def test_two_signed_in_users_open_a_direct_chat(self):
        self.login("u2", username="bob")
        self.assertEqual(self.client.get(reverse('conversations:chat-list')).status_code, status.HTTP_200_OK)

        self.login("u1", username="alice")
        response = self.client.post('/chats/private', {'userId': 'u2'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertCountEqual([m['username'] for m in response.data['members']], ['alice', 'bob'])

        self.login("u2", username="bob")
        chats = self.client.get(reverse('conversations:chat-list'))
        self.assertEqual(chats.data['results'][0]['conversation_id'], response.data['conversation_id'])

    def test_user_who_never_signed_in_is_not_found(self):
        self.login("u1")

        response = self.client.post('/chats/private', {'userId': 'u2'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(User.objects.filter(user_id="u1").exists())
