"""Unit tests for bearer-token decoding and the admin guard."""

import pytest
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt
from libs.auth.dependencies import get_optional_user
from services.storefront_service.dependencies import require_store_admin
from services.storefront_service.errors import AdminRequired, AuthenticationRequired
from tests.conftest import make_admin_user, make_user, settings


def _bearer(claims: dict, secret: str = None) -> HTTPAuthorizationCredentials:
    token = jwt.encode(claims, secret or settings.SUPABASE_JWT_SECRET, algorithm="HS256")
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_valid_token_yields_user():
    user = await get_optional_user(
        _bearer(
            {
                "sub": "shopper-9",
                "email": "nine@test.com",
                "role": "authenticated",
                "aud": "authenticated",
            }
        )
    )

    assert user.user_id == "shopper-9"
    assert user.is_admin is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_claim():
    user = await get_optional_user(
        _bearer({"sub": "admin-9", "app_metadata": {"role": "admin"}})
    )

    assert user.is_admin is True


@pytest.mark.asyncio
@pytest.mark.unit
async def test_bad_tokens_are_anonymous():
    assert await get_optional_user(None) is None
    assert await get_optional_user(_bearer({"sub": "x"}, secret="wrong")) is None
    # Missing subject
    assert await get_optional_user(_bearer({"email": "a@test.com"})) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_admin_guard():
    assert (await require_store_admin(make_admin_user())).user_id == "admin-1"

    with pytest.raises(AuthenticationRequired):
        await require_store_admin(None)
    with pytest.raises(AdminRequired):
        await require_store_admin(make_user())
