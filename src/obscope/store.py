"""Credential stores consulted when a scope is entered."""

from typing import Protocol

import aiosqlite

from obscope.models import ResolvedCredential
from obscope.services.credentials import resolve_credential


class CredentialStore(Protocol):
    """Resolves credential ids for a job.

    Returns None for unknown ids and ids the job may not use; raises only on
    infrastructure errors.
    """

    async def resolve(
        self, credentials_id: str, job_id: str
    ) -> ResolvedCredential | None: ...


class DatabaseCredentialStore:
    """CredentialStore over the encrypted SQLite credential table."""

    def __init__(self, db: aiosqlite.Connection, master_key: bytes) -> None:
        self._db = db
        self._master_key = master_key

    async def resolve(
        self, credentials_id: str, job_id: str
    ) -> ResolvedCredential | None:
        return await resolve_credential(self._db, credentials_id, job_id, self._master_key)
