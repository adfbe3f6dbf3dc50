from django.contrib import admin
from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = (
        "username",
        "user_id",
        "is_online",
        "last_seen_at",
        "created_at",
    )
    list_filter = ("is_online",)
    search_fields = ("username", "user_id")
