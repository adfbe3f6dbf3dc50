from dataclasses import dataclass, field

import jwt
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

from users.models import User

from .jwt_utils import validate_jwt_token
from .token_blacklist import get_token_blacklist
from .user_directory import get_user_directory


@dataclass
class TokenUser:
    """The caller identified by a bearer token. Not a database user."""

    user_id: str
    claims: dict = field(default_factory=dict)

    is_authenticated = True
    is_anonymous = False

    @property
    def pk(self):
        return self.user_id

    def __str__(self):
        return self.user_id


def parse_bearer(header):
    """Return the token from ``Bearer <token>``, or None when malformed."""
    parts = (header or "").split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def authenticate_token(token, blacklist=None):
    """
    Validate ``token`` against the shared token contract.

    Returns the ``TokenUser``; raises ``jwt.InvalidTokenError`` otherwise.
    """
    blacklist = blacklist if blacklist is not None else get_token_blacklist()
    if token in blacklist:
        raise jwt.InvalidTokenError("Token has been invalidated")
    payload = validate_jwt_token(token)
    return TokenUser(user_id=str(payload["sub"]), claims=payload)


def mirror_user(token_user):
    """Make sure the token holder has a row in the local users table."""
    user, updated = User.objects.sync_from_claims(token_user.user_id, token_user.claims)
    if updated:
        get_user_directory().forget(user.user_id)
    return user


class BearerTokenAuthentication(BaseAuthentication):
    """
    Authenticate a request using the JWT in the Authorization header.

    Requests without the header are left anonymous so the permission layer
    answers 401. A header that is present but malformed, invalid, expired or
    blacklisted fails authentication outright. An accepted caller is mirrored
    into the local users table so other users can open chats with them.
    """

    keyword = "Bearer"

    def __init__(self, blacklist=None):
        self.blacklist = blacklist

    def authenticate(self, request):
        header = request.headers.get("Authorization")
        if not header:
            return None

        token = parse_bearer(header)
        if token is None:
            raise AuthenticationFailed("Wrong token format. Expected 'Bearer <token>'")

        try:
            user = authenticate_token(token, self.blacklist)
        except jwt.InvalidTokenError as e:
            raise AuthenticationFailed(str(e))

        mirror_user(user)
        request.user_id = user.user_id
        return (user, token)

    def authenticate_header(self, request):
        return self.keyword
