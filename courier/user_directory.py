"""
User lookup collaborator.

Chat stores only user ids. Display identity (username, avatar, presence)
is resolved here into ``UserSummary`` view objects instead of being embedded
in stored rows.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.core.cache import cache

from users.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserSummary:
    user_id: str
    username: str
    avatar_url: Optional[str] = None
    is_online: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


def placeholder_summary(user_id: str) -> UserSummary:
    """Summary for an id the directory does not know about."""
    return UserSummary(user_id=user_id, username=f"User {user_id}")


class UserDirectory:
    """Resolves user ids against the local ``users`` mirror."""

    cache_prefix = "user_summary"

    def __init__(self, cache_ttl: Optional[int] = None):
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.USER_DIRECTORY_CACHE_TTL

    def _safe_cache_get_many(self, keys: List[str]) -> Dict:
        try:
            return cache.get_many(keys)
        except Exception as e:
            logger.warning(f"User cache unavailable: {e}")
            return {}

    def _safe_cache_set_many(self, values: Dict):
        try:
            cache.set_many(values, self.cache_ttl)
        except Exception as e:
            logger.warning(f"User cache unavailable: {e}")

    def _key(self, user_id: str) -> str:
        return f"{self.cache_prefix}:{user_id}"

    def existing_ids(self, user_ids: Iterable[str]) -> set:
        """Return the subset of ``user_ids`` that belong to known users."""
        ids = set(user_ids)
        if not ids:
            return set()
        return set(User.objects.filter(user_id__in=ids).values_list("user_id", flat=True))

    def exists(self, user_id: str) -> bool:
        return User.objects.filter(user_id=user_id).exists()

    def resolve(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        """
        Map each id to a ``UserSummary``.

        Usernames and avatars are cached; presence is always read from the
        database since it is the authoritative online flag. Unknown ids get a
        placeholder summary rather than being dropped.
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        cached = self._safe_cache_get_many([self._key(uid) for uid in ids])
        profiles = {}
        for uid in ids:
            entry = cached.get(self._key(uid))
            if entry:
                profiles[uid] = entry

        missing = [uid for uid in ids if uid not in profiles]
        if missing:
            rows = User.objects.filter(user_id__in=missing).values("user_id", "username", "avatar_url")
            fresh = {row["user_id"]: {"username": row["username"], "avatar_url": row["avatar_url"]} for row in rows}
            if fresh:
                self._safe_cache_set_many({self._key(uid): data for uid, data in fresh.items()})
            profiles.update(fresh)

        online = set(
            User.objects.filter(user_id__in=ids, is_online=True).values_list("user_id", flat=True)
        )

        result = {}
        for uid in ids:
            profile = profiles.get(uid)
            if profile is None:
                result[uid] = placeholder_summary(uid)
                continue
            result[uid] = UserSummary(
                user_id=uid,
                username=profile["username"],
                avatar_url=profile.get("avatar_url"),
                is_online=uid in online,
            )
        return result

    def forget(self, user_id: str):
        """Drop the cached profile so the next lookup reads the database."""
        try:
            cache.delete(self._key(user_id))
        except Exception as e:
            logger.warning(f"User cache unavailable: {e}")

    def resolve_one(self, user_id: str) -> UserSummary:
        return self.resolve([user_id])[user_id]

    def display_name(self, user_id: str) -> str:
        return self.resolve_one(user_id).username

    def invalidate(self, user_id: str):
        try:
            cache.delete(self._key(user_id))
        except Exception as e:
            logger.warning(f"User cache unavailable: {e}")


_user_directory = None


def get_user_directory() -> UserDirectory:
    """Get global user directory instance"""
    global _user_directory
    if _user_directory is None:
        _user_directory = UserDirectory()
    return _user_directory
