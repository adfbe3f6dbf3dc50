import logging
import time
from urllib.parse import parse_qs

import jwt
from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.conf import settings
from django.core.cache import cache

from courier.authentication import authenticate_token, mirror_user, parse_bearer

logger = logging.getLogger(__name__)

CLOSE_UNAUTHORIZED = 4001
CLOSE_RATE_LIMITED = 4029


class WebSocketAuthMiddleware(BaseMiddleware):
    """
    Authenticate the websocket handshake with the same bearer token the REST
    API accepts, then rate limit connection attempts per user.

    The token comes from the ``token`` query parameter, or from an
    ``Authorization: Bearer`` header for clients that can set one.
    """

    def __init__(self, inner, blacklist=None):
        super().__init__(inner)
        self.blacklist = blacklist

    async def __call__(self, scope, receive, send):
        token = self.get_token(scope)
        if not token:
            await self.reject(send, CLOSE_UNAUTHORIZED, "Authentication token required")
            return

        user = self.authenticate(token)
        if user is None:
            await self.reject(send, CLOSE_UNAUTHORIZED, "Invalid authentication token")
            return

        if not self.check_rate_limit(user.user_id):
            await self.reject(send, CLOSE_RATE_LIMITED, "Rate limit exceeded")
            return

        await database_sync_to_async(mirror_user)(user)
        scope = dict(scope, user=user, user_id=user.user_id, authenticated=True)
        return await super().__call__(scope, receive, send)

    def get_token(self, scope):
        query_params = parse_qs(scope.get("query_string", b"").decode())
        token = query_params.get("token", [None])[0]
        if token:
            return token

        for name, value in scope.get("headers", []):
            if name.lower() == b"authorization":
                return parse_bearer(value.decode("latin-1"))
        return None

    def authenticate(self, token):
        try:
            return authenticate_token(token, self.blacklist)
        except jwt.InvalidTokenError as e:
            logger.info(f"Websocket authentication failed: {e}")
            return None

    def check_rate_limit(self, user_id):
        """Allow at most WEBSOCKET_RATE_LIMIT connection attempts per minute."""
        cache_key = f"websocket_rate_limit:{user_id}"
        current_time = int(time.time())

        rate_data = cache.get(cache_key, {"count": 0, "window_start": current_time})
        if current_time - rate_data["window_start"] >= 60:
            rate_data = {"count": 0, "window_start": current_time}

        if rate_data["count"] >= settings.WEBSOCKET_RATE_LIMIT:
            logger.warning(f"Websocket rate limit exceeded for {user_id}")
            return False

        rate_data["count"] += 1
        cache.set(cache_key, rate_data, 60)
        return True

    async def reject(self, send, code, reason):
        await send({"type": "websocket.close", "code": code, "reason": reason})


class WebSocketSecurityMiddleware(BaseMiddleware):
    """Expose the connection limits to consumers through the scope."""

    async def __call__(self, scope, receive, send):
        scope = dict(
            scope,
            max_message_size=settings.WEBSOCKET_MAX_MESSAGE_SIZE,
            connection_timeout=settings.WEBSOCKET_CONNECTION_TIMEOUT,
            heartbeat_interval=settings.WEBSOCKET_HEARTBEAT_INTERVAL,
        )
        return await super().__call__(scope, receive, send)
