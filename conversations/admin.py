from django.contrib import admin
from .models import Conversation, ConversationMember


class ConversationMemberInline(admin.TabularInline):
    model = ConversationMember
    extra = 0
    readonly_fields = ['joined_at']


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ['conversation_id', 'kind', 'title', 'owner_id', 'created_at', 'last_message_at']
    list_filter = ['kind', 'is_discoverable', 'created_at']
    search_fields = ['conversation_id', 'title', 'owner_id']
    readonly_fields = ['conversation_id', 'direct_key', 'last_message', 'created_at', 'updated_at']
    inlines = [ConversationMemberInline]
