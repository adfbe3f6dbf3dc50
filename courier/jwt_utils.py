"""
JWT utilities for the courier application.

Token issuance belongs to the identity service. This module validates the
bearer tokens it hands out, and can mint tokens for tests and local runs.
REST authentication and the websocket handshake both go through
``validate_jwt_token`` so the two surfaces share one token contract.
"""

import time

import jwt
from django.conf import settings


class JWTManager:
    """
    JWT manager for token generation and validation.
    """

    def __init__(self, secret=None, algorithm=None, issuer=None, audience=None):
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience

    @property
    def secret(self):
        return self._secret or settings.JWT_SECRET

    @property
    def algorithm(self):
        return self._algorithm or settings.JWT_ALGORITHM

    @property
    def issuer(self):
        return self._issuer or getattr(settings, "JWT_ISSUER", None)

    @property
    def audience(self):
        return self._audience or getattr(settings, "JWT_AUDIENCE", None)

    def generate_token(self, user_id, expires_in_hours=24, **claims):
        """
        Generate a signed token for ``user_id``.

        Args:
            user_id (str): The user ID stored in the ``sub`` claim
            expires_in_hours (float): Token lifetime in hours

        Returns:
            str: JWT token string
        """
        now = int(time.time())
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + int(expires_in_hours * 3600),
        }
        if self.issuer:
            payload["iss"] = self.issuer
        if self.audience:
            payload["aud"] = self.audience
        payload.update(claims)

        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def validate_token(self, token):
        """
        Validate a JWT token and return its payload.

        Raises:
            jwt.InvalidTokenError: If the token is malformed, expired, or
                carries no subject.
        """
        options = {"require": ["exp", "sub"]}
        kwargs = {}
        if self.issuer:
            kwargs["issuer"] = self.issuer
        if self.audience:
            kwargs["audience"] = self.audience
        else:
            options["verify_aud"] = False

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options=options,
                **kwargs,
            )
        except jwt.ExpiredSignatureError:
            raise jwt.InvalidTokenError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise jwt.InvalidTokenError(f"Invalid token: {str(e)}")

        if not payload.get("sub"):
            raise jwt.InvalidTokenError("Invalid token: missing subject")
        return payload

    def extract_user_id(self, token):
        """Return the ``sub`` claim of a valid token, or None."""
        try:
            return self.validate_token(token)["sub"]
        except jwt.InvalidTokenError:
            return None


_jwt_manager = None


def _get_jwt_manager():
    """Get the global JWT manager instance, creating it if needed."""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager


def generate_test_token(user_id, expires_in_hours=24, **claims):
    """Generate a JWT token for the given user ID."""
    return _get_jwt_manager().generate_token(user_id, expires_in_hours, **claims)


def validate_jwt_token(token):
    """Validate a JWT token and return the payload."""
    return _get_jwt_manager().validate_token(token)


def get_user_id_from_token(token):
    """Extract user ID from JWT token."""
    return _get_jwt_manager().extract_user_id(token)
