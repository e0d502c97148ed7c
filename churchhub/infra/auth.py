from __future__ import annotations

import hashlib
import hmac
import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
PASSWORD_SALT = os.getenv("PASSWORD_SALT", "churchhub-dev-salt")


def hash_password(raw_password: str) -> str:
    return hashlib.sha256(f"{PASSWORD_SALT}:{raw_password}".encode()).hexdigest()


def verify_password(raw_password: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(raw_password), password_hash)


def create_access_token(*, user_id: str, expires_minutes: int | None = None) -> str:
    # Tenancy is not carried in the token; the tenant resolver derives it per request.
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if not isinstance(decoded, dict) or not isinstance(decoded.get("sub"), str):
        raise ValueError("Invalid token payload")
    return decoded
