import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import bcrypt
import jwt

from .config import Settings
from .errors import Unauthorized
from .models import User, utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
ALGORITHM = "HS256"
REFRESH_TOKEN_MAX_AGE = timedelta(days=7)


def hash_password(password: str, rounds: int = 10) -> str:
    """Salted one-way hash of a password"""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.warning("Password hash could not be checked")
        return False


def _encode(claims: dict[str, Any], secret: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "iat": now,
        "exp": now + lifetime,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def create_access_token(user: User, settings: Settings) -> str:
    return _encode(
        {"sub": str(user.id), "email": user.email, "role": user.role, "type": ACCESS_TOKEN_TYPE},
        settings.jwt_secret,
        timedelta(minutes=settings.jwt_expire_minutes),
    )


def create_refresh_token(user: User, settings: Settings) -> str:
    return _encode(
        {"sub": str(user.id), "type": REFRESH_TOKEN_TYPE},
        settings.jwt_refresh_secret,
        timedelta(days=settings.jwt_refresh_expire_days),
    )


def issue_tokens(user: User, settings: Settings) -> tuple[str, str]:
    """Return a fresh (access_token, refresh_token) pair for ``user``"""
    return create_access_token(user, settings), create_refresh_token(user, settings)


def _decode(token: str, secret: str, expected_type: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require": ["exp", "sub"]})
    except jwt.PyJWTError:
        raise Unauthorized(f"Invalid or expired {expected_type} token")
    if payload.get("type") != expected_type:
        raise Unauthorized(f"Invalid or expired {expected_type} token")
    return payload


def verify_access_token(token: str, settings: Settings) -> dict[str, Any]:
    return _decode(token, settings.jwt_secret, ACCESS_TOKEN_TYPE)


def verify_refresh_token(token: str, settings: Settings) -> dict[str, Any]:
    return _decode(token, settings.jwt_refresh_secret, REFRESH_TOKEN_TYPE)


def token_user_id(payload: dict[str, Any]) -> int:
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise Unauthorized("Invalid token subject")


def prune_refresh_tokens(
    records: Iterable[dict[str, Any]],
    now: Optional[datetime] = None,
    max_age: timedelta = REFRESH_TOKEN_MAX_AGE,
) -> list[dict[str, Any]]:
    """Drop refresh-token records older than ``max_age``"""
    now = now or utcnow()
    kept = []
    for record in records:
        try:
            created_at = datetime.fromisoformat(record["created_at"])
        except (KeyError, TypeError, ValueError):
            continue
        if created_at + max_age > now:
            kept.append(record)
    return kept


def refresh_token_record(token: str, now: Optional[datetime] = None) -> dict[str, Any]:
    return {"token": token, "created_at": (now or utcnow()).isoformat()}
