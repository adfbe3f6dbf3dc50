from django.contrib import admin
from .models import Message, MessageReceipt


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ['id', 'conversation', 'sender_id', 'kind', 'body_preview', 'created_at']
    list_filter = ['kind', 'created_at']
    search_fields = ['body', 'sender_id', 'conversation__conversation_id']
    readonly_fields = ['created_at']

    @admin.display(description='Body Preview')
    def body_preview(self, obj):
        return obj.body[:50] + "..." if len(obj.body) > 50 else obj.body


@admin.register(MessageReceipt)
class MessageReceiptAdmin(admin.ModelAdmin):
    list_display = ['message', 'user_id', 'read_at']
    search_fields = ['user_id']
    readonly_fields = ['read_at']
