"""
JWT authentication middleware for Django Channels.

This middleware extracts a JWT token either from the WebSocket's
`Authorization: Bearer <token>` header or from a `token` query parameter.
It validates the token using SimpleJWT and populates `scope['user']` with
the corresponding Django user instance.  Connections whose token cannot be
validated keep an `AnonymousUser` and are closed by the chat consumer.
"""

import logging
import urllib.parse
from typing import Callable

from channels.auth import AuthMiddlewareStack
from channels.middleware import BaseMiddleware
from channels.db import database_sync_to_async
from django.contrib.auth.models import AnonymousUser
from django.contrib.auth import get_user_model
from django.db import close_old_connections
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)

User = get_user_model()


@database_sync_to_async
def get_user_from_token(token):
    """Validate an access token and return its user, or None."""
    try:
        payload = AccessToken(token)
        user_id = payload.get("user_id")
        if user_id:
            return User.objects.get(pk=user_id, is_active=True)
    except (InvalidToken, TokenError) as e:
        logger.info("Rejected websocket token: %s", e)
    except User.DoesNotExist:
        logger.info("Websocket token for unknown user")
    return None


def _token_from_scope(scope) -> str | None:
    headers = dict(scope.get("headers", []))
    auth_header = headers.get(b"authorization", b"").decode()
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()

    qs = scope.get("query_string", b"").decode()
    params = urllib.parse.parse_qs(qs)
    return params.get("token", [None])[0]


class _JWTMiddleware(BaseMiddleware):
    """Low-level middleware to handle JWT tokens in a WebSocket scope."""

    async def __call__(self, scope, receive, send):
        token = _token_from_scope(scope)

        # A user injected upstream (e.g. by tests) wins over a missing token
        if token:
            scope["user"] = AnonymousUser()
            user = await get_user_from_token(token)
            if user:
                scope["user"] = user
        else:
            scope.setdefault("user", AnonymousUser())

        # Close old database connections to prevent leaks
        close_old_connections()
        return await super().__call__(scope, receive, send)


def JWTAuthMiddlewareStack(inner: Callable):
    """Entry point for the middleware stack used by Channels routing."""
    return _JWTMiddleware(AuthMiddlewareStack(inner))
