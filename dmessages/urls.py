from django.urls import path
from .views import ChatMessagesView

app_name = 'dmessages'

urlpatterns = [
    path('chats/<str:conversation_id>/messages', ChatMessagesView.as_view(), name='chat-messages'),
]
