"""Credential management: CRUD, access-checked resolution and picker listing."""

import logging
import re
from typing import TypedDict

import aiosqlite

from obscope.crypto import decrypt_secret, encrypt_secret
from obscope.models import CredentialScope, ResolvedCredential

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_ID_MAX_LENGTH = 128

EMPTY_ITEM_LABEL = "- none -"


class CredentialInfo(TypedDict):
    """Credential metadata returned by list/get operations."""

    id: str
    username: str
    description: str
    scope: str
    created_at: str
    updated_at: str | None


class CredentialItemInfo(TypedDict):
    """Picker entry: the id to submit and a label safe to display."""

    value: str
    name: str


def validate_credential_id(credential_id: str) -> None:
    """Validate a credential id against naming rules.

    Raises ValueError if the id is invalid.
    """
    if not credential_id:
        raise ValueError("Credential id cannot be empty")
    if len(credential_id) > _ID_MAX_LENGTH:
        raise ValueError(f"Credential id exceeds {_ID_MAX_LENGTH} characters")
    if not _ID_PATTERN.match(credential_id):
        raise ValueError(
            f"Invalid credential id '{credential_id}': must match [A-Za-z0-9][A-Za-z0-9_.-]*"
        )


def _row_to_info(row: aiosqlite.Row) -> CredentialInfo:
    return CredentialInfo(
        id=row["id"],
        username=row["username"],
        description=row["description"],
        scope=row["scope"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _item_label(row: aiosqlite.Row) -> str:
    label = f"{row['username']}/****"
    if row["description"]:
        label += f" ({row['description']})"
    return label


async def list_credentials(db: aiosqlite.Connection) -> list[CredentialInfo]:
    """List all credentials with metadata. Never returns secrets."""
    cursor = await db.execute(
        "SELECT id, username, description, scope, created_at, updated_at "
        "FROM credentials ORDER BY id"
    )
    return [_row_to_info(row) for row in await cursor.fetchall()]


async def get_credential(
    db: aiosqlite.Connection, credential_id: str
) -> CredentialInfo | None:
    """Get a single credential's metadata by id."""
    cursor = await db.execute(
        "SELECT id, username, description, scope, created_at, updated_at "
        "FROM credentials WHERE id = ?",
        (credential_id,),
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    return _row_to_info(row)


# Sentinel for "not provided"
_UNSET = object()


async def create_credential(
    db: aiosqlite.Connection,
    credential_id: str,
    username: str,
    secret: str,
    master_key: bytes,
    description: str = "",
    scope: CredentialScope = CredentialScope.GLOBAL,
) -> CredentialInfo:
    """Store a username/secret credential.

    Raises ValueError if the id is invalid or already taken.
    """
    validate_credential_id(credential_id)

    if await get_credential(db, credential_id) is not None:
        raise ValueError(f"Credential '{credential_id}' already exists")

    await db.execute(
        "INSERT INTO credentials (id, username, encrypted_secret, description, scope) "
        "VALUES (?, ?, ?, ?, ?)",
        (
            credential_id,
            username,
            encrypt_secret(secret, master_key, credential_id),
            description,
            CredentialScope(scope).value,
        ),
    )
    await db.commit()

    return (await get_credential(db, credential_id))  # type: ignore[return-value]


async def update_credential(
    db: aiosqlite.Connection,
    credential_id: str,
    username: str | object = _UNSET,
    secret: str | object = _UNSET,
    description: str | object = _UNSET,
    scope: CredentialScope | object = _UNSET,
    master_key: bytes | None = None,
) -> CredentialInfo:
    """Update any subset of a credential's fields.

    Raises ValueError if the credential doesn't exist, or if a new secret is
    given without the master key.
    """
    existing = await get_credential(db, credential_id)
    if existing is None:
        raise ValueError(f"Credential '{credential_id}' not found")

    updates: list[str] = []
    params: list[str | bytes] = []

    if username is not _UNSET:
        updates.append("username = ?")
        params.append(username)  # type: ignore[arg-type]

    if secret is not _UNSET:
        if master_key is None:
            raise ValueError("master_key required to encrypt secret")
        updates.append("encrypted_secret = ?")
        params.append(encrypt_secret(secret, master_key, credential_id))  # type: ignore[arg-type]

    if description is not _UNSET:
        updates.append("description = ?")
        params.append(description)  # type: ignore[arg-type]

    if scope is not _UNSET:
        updates.append("scope = ?")
        params.append(CredentialScope(scope).value)

    if not updates:
        return existing

    updates.append("updated_at = datetime('now')")
    params.append(credential_id)

    await db.execute(
        f"UPDATE credentials SET {', '.join(updates)} WHERE id = ?",
        params,
    )
    await db.commit()

    return (await get_credential(db, credential_id))  # type: ignore[return-value]


async def delete_credential(db: aiosqlite.Connection, credential_id: str) -> None:
    """Delete a credential and every grant referencing it.

    Raises ValueError if the credential doesn't exist.
    """
    if await get_credential(db, credential_id) is None:
        raise ValueError(f"Credential '{credential_id}' not found")

    await db.execute(
        "DELETE FROM job_credentials WHERE credential_id = ?", (credential_id,)
    )
    await db.execute("DELETE FROM credentials WHERE id = ?", (credential_id,))
    await db.commit()


async def resolve_credential(
    db: aiosqlite.Connection,
    credential_id: str,
    job_id: str,
    master_key: bytes,
) -> ResolvedCredential | None:
    """Decrypt a credential on behalf of a job. Used by the credential store.

    Returns None when the id is empty, unknown, or scoped to jobs that do not
    include job_id. Decryption errors propagate.
    """
    if not credential_id:
        return None

    cursor = await db.execute(
        "SELECT c.username, c.encrypted_secret, c.scope, "
        "EXISTS (SELECT 1 FROM job_credentials jc "
        "        WHERE jc.credential_id = c.id AND jc.job_id = ?) AS granted "
        "FROM credentials c WHERE c.id = ?",
        (job_id, credential_id),
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    if row["scope"] == CredentialScope.JOB.value and not row["granted"]:
        logger.debug("Job %s has no grant for credential %s", job_id, credential_id)
        return None

    return ResolvedCredential(
        username=row["username"],
        secret=decrypt_secret(row["encrypted_secret"], master_key, credential_id),
    )


async def list_credential_items(
    db: aiosqlite.Connection, job_id: str
) -> list[CredentialItemInfo]:
    """Picker contents for a job: an empty choice, then every visible credential."""
    cursor = await db.execute(
        "SELECT c.id, c.username, c.description FROM credentials c "
        "WHERE c.scope = 'global' OR EXISTS ("
        "    SELECT 1 FROM job_credentials jc "
        "    WHERE jc.credential_id = c.id AND jc.job_id = ?) "
        "ORDER BY c.id",
        (job_id,),
    )
    rows = await cursor.fetchall()
    items = [CredentialItemInfo(value="", name=EMPTY_ITEM_LABEL)]
    items.extend(CredentialItemInfo(value=row["id"], name=_item_label(row)) for row in rows)
    return items
