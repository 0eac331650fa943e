from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)
optional_security = HTTPBearer(auto_error=False)


def decode_token(token: str) -> AuthUser:
    """Decode a Supabase access token (HS256) into an AuthUser."""
    payload = jwt.decode(
        token,
        get_settings().SUPABASE_JWT_SECRET,
        algorithms=["HS256"],
        options={"verify_aud": False},
    )
    return AuthUser(**payload)


async def get_optional_user(
    token: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(optional_security)
    ] = None,
) -> Optional[AuthUser]:
    """
    Return the shopper when a valid bearer token is present, otherwise None.

    Endpoints decide for themselves whether an anonymous caller is acceptable;
    an expired or forged token is treated the same as no token.
    """
    if token is None:
        return None
    try:
        return decode_token(token.credentials)
    except (JWTError, ValidationError) as exc:
        logger.info("Ignoring invalid bearer token: %s", exc)
        return None
