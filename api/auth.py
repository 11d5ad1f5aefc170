"""
Caller identification for the REST API.

Two kinds of callers are accepted:

- users presenting an HS256 access token (``Authorization: Bearer``),
  identified by its ``sub`` claim;
- this deployment's own runbook steps calling back into ``/api/`` routes,
  identified by ``x-internal-user-id`` and, when an internal token is
  configured, authenticated by a matching ``x-internal-token``.
"""

import hmac
import logging
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import config
from errors import AuthError, ErrorCode

logger = logging.getLogger(__name__)

INTERNAL_USER_HEADER = "x-internal-user-id"
INTERNAL_TOKEN_HEADER = "x-internal-token"

security = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> str:
    """
    Validate an access token and return the user id it carries.

    Raises:
        AuthError: If tokens cannot be verified or the token is invalid
    """
    secret = config.auth.jwt_secret
    if not secret:
        raise AuthError("Bearer authentication is not configured", ErrorCode.AUTH_INVALID_TOKEN)

    audience = config.auth.jwt_audience
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[config.auth.jwt_algorithm],
            audience=audience,
            options={"verify_aud": audience is not None}
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Access token has expired", ErrorCode.AUTH_INVALID_TOKEN)
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected access token: {e}")
        raise AuthError("Invalid or expired access token", ErrorCode.AUTH_INVALID_TOKEN)

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Access token does not identify a user", ErrorCode.AUTH_INVALID_TOKEN)
    return str(user_id)


def _internal_caller(request: Request) -> Optional[str]:
    user_id = request.headers.get(INTERNAL_USER_HEADER)
    if not user_id:
        return None

    expected = config.runbook.internal_token
    if expected:
        presented = request.headers.get(INTERNAL_TOKEN_HEADER) or ""
        if not hmac.compare_digest(presented, expected):
            raise AuthError("Invalid internal caller", ErrorCode.AUTH_INVALID_INTERNAL_CALLER)
    return user_id


def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    FastAPI dependency returning the id of the calling user.

    Raises:
        AuthError: If the caller cannot be identified
    """
    if credentials is not None:
        return decode_access_token(credentials.credentials)

    user_id = _internal_caller(request)
    if user_id:
        return user_id

    raise AuthError("Unauthorized", ErrorCode.AUTH_MISSING_CREDENTIALS)
