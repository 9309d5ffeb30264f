"""
Caller identity at the HTTP boundary.

Tokens are HS256 JWTs issued by the account service; this module only
verifies them and hands the caller's id and username to the route.
"""

import logging
from dataclasses import dataclass
from typing import Annotated

import jwt
from fastapi import Depends, Header, Request

from geonotes.errors import Unauthorized

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Caller:
    user_id: str
    display_name: str


def decode_bearer_token(token: str, secret: str) -> dict:
    """
    Verify a bearer token's signature and expiry and return its claims.

    Raises:
        jwt.PyJWTError: If the token is malformed, badly signed or expired
    """
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


def caller_from_claims(claims: dict) -> Caller:
    """
    Build the Caller from verified claims.

    The account service puts the user id in `id`; `sub` is accepted too.
    Without a `username` claim the id doubles as the display name.
    """
    user_id = claims.get("sub", claims.get("id"))
    if not isinstance(user_id, str) or not user_id:
        raise Unauthorized("Not authorized, token failed")

    username = claims.get("username", user_id)
    if not isinstance(username, str):
        raise Unauthorized("Not authorized, token failed")

    return Caller(user_id=user_id, display_name=username)


def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> Caller:
    """FastAPI dependency: resolve the bearer token into a Caller or raise 401."""
    if not authorization:
        raise Unauthorized("Not authorized, no token")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Not authorized, no token")

    settings = request.app.state.settings
    try:
        claims = decode_bearer_token(token.strip(), settings.AUTH_TOKEN_SECRET)
    except jwt.ExpiredSignatureError:
        logger.info("Bearer token expired")
        raise Unauthorized("Not authorized, token failed")
    except jwt.PyJWTError as e:
        logger.info(f"Bearer token rejected: {e}")
        raise Unauthorized("Not authorized, token failed")

    return caller_from_claims(claims)


CurrentUser = Annotated[Caller, Depends(get_current_user)]
