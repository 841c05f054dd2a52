"""WebSocket authentication middleware: JWT access token or Django session."""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken

logger = logging.getLogger(__name__)


@database_sync_to_async
def user_for_token(raw_token: str):
    """Resolve an access token to an active user, or AnonymousUser."""
    try:
        token = AccessToken(raw_token)
        user_id = token[api_settings.USER_ID_CLAIM]
    except (TokenError, KeyError) as exc:
        logger.debug("Rejected WebSocket token: %s", exc)
        return AnonymousUser()

    User = get_user_model()
    user = User.objects.filter(**{api_settings.USER_ID_FIELD: user_id}, is_active=True).first()
    return user or AnonymousUser()


class JWTOrCookieAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections using either:
    1. JWT in querystring (?token=...), for mobile clients
    2. The session user already set by AuthMiddlewareStack, for browsers
    """

    async def __call__(self, scope, receive, send):
        params = parse_qs(scope.get("query_string", b"").decode())

        token_list = params.get("token")
        if token_list:
            scope["user"] = await user_for_token(token_list[0])
        elif "user" not in scope:
            scope["user"] = AnonymousUser()

        return await super().__call__(scope, receive, send)
