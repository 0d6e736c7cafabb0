"""Admin authentication: first-visit password setup and session tokens.

A valid admin session is what grants configure permission, both for the
management routes and for the credential picker.
"""

import hashlib
import hmac
import secrets
import string

import aiosqlite
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from obscope.db import get_db

_bearer = HTTPBearer(auto_error=False)

TOKEN_PREFIX = "ost_"
TOKEN_CHARS = string.ascii_letters + string.digits
TOKEN_LENGTH = 32
MIN_PASSWORD_LENGTH = 8
_PBKDF2_ITERATIONS = 200_000


def _hash_password(password: str, salt: bytes | None = None) -> str:
    """PBKDF2-SHA256 a password; returns 'salt$digest' in hex."""
    salt = salt if salt is not None else secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def _verify_password(password: str, stored: str) -> bool:
    salt_hex, _, _ = stored.partition("$")
    return hmac.compare_digest(_hash_password(password, bytes.fromhex(salt_hex)), stored)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _generate_token() -> str:
    random_part = "".join(secrets.choice(TOKEN_CHARS) for _ in range(TOKEN_LENGTH))
    return f"{TOKEN_PREFIX}{random_part}"


async def _issue_session(db: aiosqlite.Connection) -> str:
    token = _generate_token()
    await db.execute(
        "INSERT OR REPLACE INTO admin (key, value) VALUES ('session_token_hash', ?)",
        (_hash_token(token),),
    )
    await db.commit()
    return token


async def is_setup_complete(db: aiosqlite.Connection) -> bool:
    """Check if the admin password has been set."""
    cursor = await db.execute("SELECT value FROM admin WHERE key = 'admin_password_hash'")
    return await cursor.fetchone() is not None


async def setup_admin(db: aiosqlite.Connection, password: str) -> str:
    """Set the admin password on first visit. Returns a session token.

    Raises ValueError if a password is already set or too short.
    """
    if await is_setup_complete(db):
        raise ValueError("Admin password already configured")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    await db.execute(
        "INSERT INTO admin (key, value) VALUES ('admin_password_hash', ?)",
        (_hash_password(password),),
    )
    return await _issue_session(db)


async def login_admin(db: aiosqlite.Connection, password: str) -> str:
    """Check the password and return a fresh session token.

    Issuing a token invalidates the previous one. Raises ValueError on a
    wrong password or before setup.
    """
    cursor = await db.execute("SELECT value FROM admin WHERE key = 'admin_password_hash'")
    row = await cursor.fetchone()
    if row is None:
        raise ValueError("Admin password not configured; run setup first")
    if not _verify_password(password, row["value"]):
        raise ValueError("Invalid password")
    return await _issue_session(db)


async def _session_valid(token: str) -> bool:
    db = await get_db()
    cursor = await db.execute("SELECT value FROM admin WHERE key = 'session_token_hash'")
    row = await cursor.fetchone()
    return row is not None and hmac.compare_digest(row["value"], _hash_token(token))


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    """FastAPI dependency that requires a valid session token."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authentication token")
    if not await _session_valid(credentials.credentials):
        raise HTTPException(status_code=401, detail="Invalid or expired session token")
    return credentials.credentials


async def can_configure(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> bool:
    """FastAPI dependency: whether the caller holds configure permission.

    Never rejects the request; callers decide what an unprivileged caller sees.
    """
    if credentials is None:
        return False
    return await _session_valid(credentials.credentials)
