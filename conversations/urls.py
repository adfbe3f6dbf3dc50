from django.urls import path
from . import views

app_name = 'conversations'

urlpatterns = [
    path('chats', views.ChatListView.as_view(), name='chat-list'),
    path('chats/private', views.PrivateChatView.as_view(), name='chat-private'),
    path('chats/group', views.GroupChatView.as_view(), name='chat-group'),
    path('chats/<str:conversation_id>', views.ChatDetailView.as_view(), name='chat-detail'),
    path('chats/<str:conversation_id>/members', views.ChatMembersView.as_view(), name='chat-members'),
    path('chats/<str:conversation_id>/members/<str:member_id>', views.ChatMemberDetailView.as_view(),
         name='chat-member-detail'),
]
