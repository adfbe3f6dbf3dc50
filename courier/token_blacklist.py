"""
Invalidated-token store.

Logged-out tokens stay cryptographically valid until they expire, so both
the REST authentication class and the websocket handshake consult a
blacklist. Two backends exist:

``InMemoryTokenBlacklist``
    Process-local. Entries remember the token's ``exp`` and a periodic full
    scan (``sweep``) drops the ones that have expired. Empty after restart,
    and not shared between server instances.

``CacheTokenBlacklist``
    Stored in the Django cache (Redis in production) with a timeout equal to
    the token's remaining lifetime, so every instance sees the same set.

``get_token_blacklist()`` builds the configured backend once per process;
callers take it as a constructor argument so tests can pass their own.
"""

import hashlib
import logging
import threading
import time

import jwt
from django.conf import settings
from django.core.cache import cache

logger = logging.getLogger(__name__)


def token_expiry(token):
    """Return the ``exp`` claim without verifying the signature, or None."""
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    exp = payload.get("exp")
    return int(exp) if exp is not None else None


class TokenBlacklist:
    """Interface shared by blacklist backends."""

    def add(self, token, expires_at=None):
        raise NotImplementedError

    def contains(self, token):
        raise NotImplementedError

    def __contains__(self, token):
        return self.contains(token)


class InMemoryTokenBlacklist(TokenBlacklist):
    def __init__(self, sweep_interval=3600, clock=time.time):
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def add(self, token, expires_at=None):
        if expires_at is None:
            expires_at = token_expiry(token)
        with self._lock:
            self._entries[token] = expires_at
        self._maybe_sweep()

    def contains(self, token):
        self._maybe_sweep()
        with self._lock:
            if token not in self._entries:
                return False
            expires_at = self._entries[token]
        if expires_at is not None and expires_at <= self._clock():
            # An expired token is rejected by signature validation anyway.
            return False
        return True

    def sweep(self):
        """Drop every entry whose token has expired. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [
                token for token, exp in self._entries.items()
                if exp is not None and exp <= now
            ]
            for token in expired:
                del self._entries[token]
            self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired tokens from blacklist")
        return len(expired)

    def _maybe_sweep(self):
        if self._clock() - self._last_sweep >= self.sweep_interval:
            self.sweep()

    def __len__(self):
        with self._lock:
            return len(self._entries)


class CacheTokenBlacklist(TokenBlacklist):
    key_prefix = "token_blacklist"
    # Tokens without exp are kept for a day.
    default_timeout = 24 * 3600

    def __init__(self, cache_backend=None, clock=time.time):
        self.cache = cache_backend or cache
        self._clock = clock

    def _key(self, token):
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return f"{self.key_prefix}:{digest}"

    def add(self, token, expires_at=None):
        if expires_at is None:
            expires_at = token_expiry(token)
        if expires_at is None:
            timeout = self.default_timeout
        else:
            timeout = int(expires_at - self._clock())
            if timeout <= 0:
                return
        self.cache.set(self._key(token), True, timeout)

    def contains(self, token):
        return bool(self.cache.get(self._key(token)))


_token_blacklist = None


def build_token_blacklist(backend=None):
    backend = backend or settings.TOKEN_BLACKLIST_BACKEND
    if backend == "cache":
        return CacheTokenBlacklist()
    if backend == "memory":
        return InMemoryTokenBlacklist(sweep_interval=settings.TOKEN_BLACKLIST_SWEEP_INTERVAL)
    raise ValueError(f"Unknown TOKEN_BLACKLIST_BACKEND: {backend}")


def get_token_blacklist():
    """Get the process-wide blacklist, creating it if needed."""
    global _token_blacklist
    if _token_blacklist is None:
        _token_blacklist = build_token_blacklist()
    return _token_blacklist
