from datetime import datetime, timedelta, timezone

import jwt
import pytest

from taskhub.config import Settings
from taskhub.errors import Unauthorized
from taskhub.models import User
from taskhub.security import (
    create_access_token,
    create_refresh_token,
    hash_password,
    prune_refresh_tokens,
    refresh_token_record,
    token_user_id,
    verify_access_token,
    verify_password,
    verify_refresh_token,
)

SETTINGS = Settings(jwt_secret="access-secret", jwt_refresh_secret="refresh-secret", bcrypt_rounds=4)


def _user():
    return User(id=7, email="dana@example.com", role="user")


def test_password_hash_round_trip():
    hashed = hash_password("secret123", rounds=4)
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong123", hashed)


def test_malformed_hash_does_not_verify():
    assert not verify_password("secret123", "not-a-bcrypt-hash")


def test_access_token_carries_identity_and_type():
    payload = verify_access_token(create_access_token(_user(), SETTINGS), SETTINGS)
    assert payload["type"] == "access"
    assert payload["role"] == "user"
    assert token_user_id(payload) == 7


def test_refresh_token_rejected_as_access_token():
    refresh = create_refresh_token(_user(), SETTINGS)
    with pytest.raises(Unauthorized):
        verify_access_token(refresh, SETTINGS)


def test_access_token_rejected_as_refresh_token():
    access = create_access_token(_user(), SETTINGS)
    with pytest.raises(Unauthorized):
        verify_refresh_token(access, SETTINGS)


def test_type_tag_checked_even_with_shared_secret():
    shared = Settings(jwt_secret="same", jwt_refresh_secret="same")
    refresh = create_refresh_token(_user(), shared)
    with pytest.raises(Unauthorized):
        verify_access_token(refresh, shared)


def test_expired_token_rejected():
    expired = jwt.encode(
        {"sub": "7", "type": "access", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        SETTINGS.jwt_secret,
        algorithm="HS256",
    )
    with pytest.raises(Unauthorized):
        verify_access_token(expired, SETTINGS)


def test_prune_drops_records_older_than_seven_days():
    now = datetime(2024, 5, 10, 12, 0)
    records = [
        refresh_token_record("old", now - timedelta(days=8)),
        refresh_token_record("edge", now - timedelta(days=7)),
        refresh_token_record("fresh", now - timedelta(days=1)),
    ]
    kept = prune_refresh_tokens(records, now)
    assert [record["token"] for record in kept] == ["fresh"]
