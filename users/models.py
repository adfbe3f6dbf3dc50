from django.db import models


class UserManager(models.Manager):
    def sync_from_claims(self, user_id, claims):
        """
        Mirror a token holder into the users table.

        Profile claims the token carries (``username`` or ``name``, and
        ``avatar_url``) overwrite the stored values; claims it leaves out keep
        them. The row is only written when something changed. Returns the
        user and whether an existing profile was updated.
        """
        profile = {}
        username = claims.get("username") or claims.get("name")
        if username:
            profile["username"] = str(username)[:100]
        if "avatar_url" in claims:
            profile["avatar_url"] = str(claims["avatar_url"])[:500] if claims["avatar_url"] else None

        user, created = self.get_or_create(
            user_id=user_id,
            defaults={"username": user_id[:100], **profile},
        )
        if created:
            return user, False

        changed = [name for name, value in profile.items() if getattr(user, name) != value]
        if changed:
            for name in changed:
                setattr(user, name, profile[name])
            user.save(update_fields=changed + ["updated_at"])
        return user, bool(changed)


class User(models.Model):
    """Local mirror of accounts owned by the identity service."""

    user_id = models.CharField(max_length=100, unique=True, primary_key=True)
    username = models.CharField(max_length=100)
    avatar_url = models.URLField(max_length=500, null=True, blank=True)
    is_online = models.BooleanField(default=False)
    last_seen_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = UserManager()

    class Meta:
        db_table = 'users'
        indexes = [
            models.Index(fields=['username'], name='users_username_idx'),
        ]

    def __str__(self):
        return f"{self.username} ({self.user_id})"
