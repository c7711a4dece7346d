import logging
from datetime import datetime, timedelta, timezone

import jwt
from core.config import settings
from core.logging_setup import log_step, user_id_var
from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

AUTH_COOKIE_NAME = "app_auth_token"
TOKEN_ISSUER = "meeting-notes-service"
TOKEN_AUDIENCE = "web-client"


class TokenPayload(BaseModel):
    """Pydantic model for the JWT payload"""

    iss: str
    iat: int
    exp: int
    sub: str
    aud: str


def generate_jwt_token(user_id: int | str, expires_in: timedelta | None = None) -> str:
    """
    Generates the session JWT (HS256) set as the auth cookie once the
    external OAuth provider has identified the user.
    """
    now = datetime.now(timezone.utc)
    expires_delta = expires_in or timedelta(hours=12)

    payload = {
        "iss": TOKEN_ISSUER,
        "iat": now,
        "exp": now + expires_delta,
        "sub": str(user_id),
        "aud": TOKEN_AUDIENCE,
    }

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm="HS256")


async def get_token_from_cookie(request: Request) -> str:
    """Extracts the auth token from the 'app_auth_token' cookie."""
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if not token:
        with log_step("SESSION"):
            logger.warning(f"Auth failed: No '{AUTH_COOKIE_NAME}' cookie.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return token


def get_current_user_payload(
    token: str = Depends(get_token_from_cookie),
) -> dict:
    """
    Validates the session token from the web browser cookie.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=["HS256"],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
        )
        TokenPayload(**payload)
        return payload
    except jwt.ExpiredSignatureError:
        with log_step("SESSION"):
            logger.warning("Auth failed: Token has expired.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired"
        )
    except (
        jwt.InvalidIssuerError,
        jwt.InvalidAudienceError,
        jwt.InvalidTokenError,
        ValidationError,
    ) as e:
        with log_step("SESSION"):
            logger.warning(f"Auth failed: Invalid token. {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )


async def get_current_user_id(payload: dict = Depends(get_current_user_payload)) -> int:
    """
    Resolves the numeric user id from the token's 'sub' claim and tags the
    request's log lines with it.
    """
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        with log_step("SESSION"):
            logger.warning("Auth token 'sub' claim is not a user id.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid auth token payload",
        )

    user_id_var.set(str(user_id))
    return user_id
