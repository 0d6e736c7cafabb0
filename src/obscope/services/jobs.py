"""Job identities and their credential grants."""

import re
from typing import TypedDict

import aiosqlite

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_ID_MAX_LENGTH = 128


class JobInfo(TypedDict):
    """Job metadata returned by list/get operations."""

    id: str
    description: str
    credentials: list[str]
    created_at: str
    updated_at: str | None


def validate_job_id(job_id: str) -> None:
    """Raises ValueError if the job id is invalid."""
    if not job_id:
        raise ValueError("Job id cannot be empty")
    if len(job_id) > _ID_MAX_LENGTH:
        raise ValueError(f"Job id exceeds {_ID_MAX_LENGTH} characters")
    if not _ID_PATTERN.match(job_id):
        raise ValueError(f"Invalid job id '{job_id}': must match [A-Za-z0-9][A-Za-z0-9_.-]*")


async def _granted_credentials(db: aiosqlite.Connection, job_id: str) -> list[str]:
    cursor = await db.execute(
        "SELECT credential_id FROM job_credentials WHERE job_id = ? ORDER BY credential_id",
        (job_id,),
    )
    return [row["credential_id"] for row in await cursor.fetchall()]


async def _row_to_job_info(db: aiosqlite.Connection, row: aiosqlite.Row) -> JobInfo:
    return JobInfo(
        id=row["id"],
        description=row["description"],
        credentials=await _granted_credentials(db, row["id"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


async def list_jobs(db: aiosqlite.Connection) -> list[JobInfo]:
    """List all jobs with their grants."""
    cursor = await db.execute(
        "SELECT id, description, created_at, updated_at FROM jobs ORDER BY id"
    )
    rows = await cursor.fetchall()
    return [await _row_to_job_info(db, row) for row in rows]


async def get_job(db: aiosqlite.Connection, job_id: str) -> JobInfo | None:
    """Get a single job by id."""
    cursor = await db.execute(
        "SELECT id, description, created_at, updated_at FROM jobs WHERE id = ?",
        (job_id,),
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    return await _row_to_job_info(db, row)


async def create_job(db: aiosqlite.Connection, job_id: str, description: str = "") -> JobInfo:
    """Register a job.

    Raises ValueError if the id is invalid or already registered.
    """
    validate_job_id(job_id)
    if await get_job(db, job_id) is not None:
        raise ValueError(f"Job '{job_id}' already exists")

    await db.execute(
        "INSERT INTO jobs (id, description) VALUES (?, ?)", (job_id, description)
    )
    await db.commit()
    return (await get_job(db, job_id))  # type: ignore[return-value]


async def update_job(
    db: aiosqlite.Connection, job_id: str, description: str | None = None
) -> JobInfo:
    """Update a job's description. Raises ValueError if the job doesn't exist."""
    existing = await get_job(db, job_id)
    if existing is None:
        raise ValueError(f"Job '{job_id}' not found")
    if description is None:
        return existing

    await db.execute(
        "UPDATE jobs SET description = ?, updated_at = datetime('now') WHERE id = ?",
        (description, job_id),
    )
    await db.commit()
    return (await get_job(db, job_id))  # type: ignore[return-value]


async def delete_job(db: aiosqlite.Connection, job_id: str) -> None:
    """Delete a job and its grants. Raises ValueError if it doesn't exist."""
    if await get_job(db, job_id) is None:
        raise ValueError(f"Job '{job_id}' not found")

    await db.execute("DELETE FROM job_credentials WHERE job_id = ?", (job_id,))
    await db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
    await db.commit()


async def _require_credentials(
    db: aiosqlite.Connection, credential_ids: list[str]
) -> None:
    for credential_id in credential_ids:
        cursor = await db.execute(
            "SELECT 1 FROM credentials WHERE id = ?", (credential_id,)
        )
        if await cursor.fetchone() is None:
            raise ValueError(f"Credential '{credential_id}' not found")


async def grant_credentials(
    db: aiosqlite.Connection, job_id: str, credential_ids: list[str]
) -> JobInfo:
    """Allow a job to resolve job-scoped credentials. Existing grants are kept.

    Raises ValueError if the job or any credential doesn't exist; nothing is
    granted in that case.
    """
    if await get_job(db, job_id) is None:
        raise ValueError(f"Job '{job_id}' not found")
    await _require_credentials(db, credential_ids)

    await db.executemany(
        "INSERT OR IGNORE INTO job_credentials (job_id, credential_id) VALUES (?, ?)",
        [(job_id, credential_id) for credential_id in credential_ids],
    )
    await db.execute(
        "UPDATE jobs SET updated_at = datetime('now') WHERE id = ?", (job_id,)
    )
    await db.commit()
    return (await get_job(db, job_id))  # type: ignore[return-value]


async def revoke_credentials(
    db: aiosqlite.Connection, job_id: str, credential_ids: list[str]
) -> JobInfo:
    """Withdraw grants. Ids that were never granted are ignored.

    Raises ValueError if the job doesn't exist.
    """
    if await get_job(db, job_id) is None:
        raise ValueError(f"Job '{job_id}' not found")

    await db.executemany(
        "DELETE FROM job_credentials WHERE job_id = ? AND credential_id = ?",
        [(job_id, credential_id) for credential_id in credential_ids],
    )
    await db.execute(
        "UPDATE jobs SET updated_at = datetime('now') WHERE id = ?", (job_id,)
    )
    await db.commit()
    return (await get_job(db, job_id))  # type: ignore[return-value]
