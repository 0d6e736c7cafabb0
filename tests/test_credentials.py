"""Tests for credential management: encryption, service layer, store, admin API."""

import os

import pytest

from obscope.engine import AsyncioEngine
from obscope.models import CredentialScope
from obscope.services.credentials import (
    EMPTY_ITEM_LABEL,
    create_credential,
    delete_credential,
    get_credential,
    list_credential_items,
    list_credentials,
    resolve_credential,
    update_credential,
    validate_credential_id,
)
from obscope.services.jobs import create_job, grant_credentials
from obscope.store import DatabaseCredentialStore


# --- Encryption ---


class TestEncryption:
    """AES-256-GCM encryption round-trip and error handling."""

    def test_encrypt_decrypt_roundtrip(self):
        from obscope.crypto import decrypt_secret, encrypt_secret

        key = os.urandom(32)
        blob = encrypt_secret("SK456", key, "cred-1")
        assert decrypt_secret(blob, key, "cred-1") == "SK456"

    def test_same_secret_different_ciphertext(self):
        from obscope.crypto import encrypt_secret

        key = os.urandom(32)
        assert encrypt_secret("s", key) != encrypt_secret("s", key)

    def test_wrong_key_raises(self):
        from cryptography.exceptions import InvalidTag

        from obscope.crypto import decrypt_secret, encrypt_secret

        blob = encrypt_secret("secret", os.urandom(32))
        with pytest.raises(InvalidTag):
            decrypt_secret(blob, os.urandom(32))

    def test_blob_bound_to_credential_id(self):
        """A blob copied onto another credential id does not decrypt."""
        from cryptography.exceptions import InvalidTag

        from obscope.crypto import decrypt_secret, encrypt_secret

        key = os.urandom(32)
        blob = encrypt_secret("secret", key, "cred-1")
        with pytest.raises(InvalidTag):
            decrypt_secret(blob, key, "cred-2")

    def test_tampered_blob_raises(self):
        from cryptography.exceptions import InvalidTag

        from obscope.crypto import decrypt_secret, encrypt_secret

        key = os.urandom(32)
        blob = bytearray(encrypt_secret("secret", key))
        blob[-1] ^= 0xFF
        with pytest.raises(InvalidTag):
            decrypt_secret(bytes(blob), key)

    def test_master_key_created_once(self, tmp_path):
        from obscope.crypto import get_or_create_master_key

        key1 = get_or_create_master_key(tmp_path)
        key2 = get_or_create_master_key(tmp_path)
        assert key1 == key2
        assert len(key1) == 32
        assert (tmp_path / ".secret").stat().st_mode & 0o777 == 0o600

    def test_master_key_wrong_size_rejected(self, tmp_path):
        from obscope.crypto import get_or_create_master_key

        (tmp_path / ".secret").write_bytes(b"short")
        with pytest.raises(ValueError):
            get_or_create_master_key(tmp_path)


# --- Validation ---


class TestValidateCredentialId:

    @pytest.mark.parametrize("credential_id", ["cred-1", "obs.prod", "A_b-9"])
    def test_valid(self, credential_id):
        validate_credential_id(credential_id)

    @pytest.mark.parametrize("credential_id", ["", "-lead", "has space", "a/b", "x" * 129])
    def test_invalid(self, credential_id):
        with pytest.raises(ValueError):
            validate_credential_id(credential_id)


# --- Service layer ---


class TestCredentialService:
    """CRUD and access-checked resolution against SQLite."""

    async def test_create_and_get(self, app, db):
        key = app.state.master_key
        info = await create_credential(db, "cred-1", "AK123", "SK456", key, description="prod")
        assert info["id"] == "cred-1"
        assert info["username"] == "AK123"
        assert info["scope"] == "global"
        assert "secret" not in info
        assert await get_credential(db, "cred-1") == info

    async def test_secret_stored_encrypted(self, app, db):
        await create_credential(db, "cred-1", "AK123", "SK456", app.state.master_key)
        cursor = await db.execute("SELECT encrypted_secret FROM credentials")
        row = await cursor.fetchone()
        assert b"SK456" not in row["encrypted_secret"]

    async def test_duplicate_rejected(self, app, db):
        await create_credential(db, "cred-1", "a", "b", app.state.master_key)
        with pytest.raises(ValueError, match="already exists"):
            await create_credential(db, "cred-1", "c", "d", app.state.master_key)

    async def test_list_sorted(self, app, db):
        for cid in ("b-cred", "a-cred"):
            await create_credential(db, cid, "u", "s", app.state.master_key)
        assert [c["id"] for c in await list_credentials(db)] == ["a-cred", "b-cred"]

    async def test_update_fields(self, app, db):
        key = app.state.master_key
        await create_credential(db, "cred-1", "AK123", "SK456", key)
        info = await update_credential(
            db, "cred-1", username="AK999", secret="SK999", scope=CredentialScope.JOB,
            master_key=key,
        )
        assert info["username"] == "AK999"
        assert info["scope"] == "job"
        assert info["updated_at"] is not None

    async def test_update_secret_requires_master_key(self, app, db):
        await create_credential(db, "cred-1", "u", "s", app.state.master_key)
        with pytest.raises(ValueError, match="master_key"):
            await update_credential(db, "cred-1", secret="new")

    async def test_update_nothing_returns_existing(self, app, db):
        info = await create_credential(db, "cred-1", "u", "s", app.state.master_key)
        assert await update_credential(db, "cred-1") == info

    async def test_update_missing(self, db):
        with pytest.raises(ValueError, match="not found"):
            await update_credential(db, "nope", username="x")

    async def test_delete_removes_grants(self, app, db):
        await create_credential(db, "cred-1", "u", "s", app.state.master_key)
        await create_job(db, "job-1")
        await grant_credentials(db, "job-1", ["cred-1"])

        await delete_credential(db, "cred-1")

        assert await get_credential(db, "cred-1") is None
        cursor = await db.execute("SELECT COUNT(*) AS n FROM job_credentials")
        assert (await cursor.fetchone())["n"] == 0

    async def test_delete_missing(self, db):
        with pytest.raises(ValueError, match="not found"):
            await delete_credential(db, "nope")


class TestResolveCredential:
    """Access control is enforced inside the store."""

    async def test_global_credential_resolves_for_any_job(self, app, db):
        key = app.state.master_key
        await create_credential(db, "cred-1", "AK123", "SK456", key)
        resolved = await resolve_credential(db, "cred-1", "any-job", key)
        assert resolved.username == "AK123"
        assert resolved.secret.get_secret_value() == "SK456"

    async def test_unknown_and_empty_ids_miss(self, app, db):
        key = app.state.master_key
        assert await resolve_credential(db, "nope", "job-1", key) is None
        assert await resolve_credential(db, "", "job-1", key) is None

    async def test_job_scoped_requires_grant(self, app, db):
        key = app.state.master_key
        await create_credential(db, "cred-1", "AK", "SK", key, scope=CredentialScope.JOB)
        await create_job(db, "job-1")
        await create_job(db, "job-2")
        await grant_credentials(db, "job-1", ["cred-1"])

        assert await resolve_credential(db, "cred-1", "job-1", key) is not None
        assert await resolve_credential(db, "cred-1", "job-2", key) is None

    async def test_wrong_master_key_propagates(self, app, db):
        from cryptography.exceptions import InvalidTag

        await create_credential(db, "cred-1", "AK", "SK", app.state.master_key)
        with pytest.raises(InvalidTag):
            await resolve_credential(db, "cred-1", "job-1", os.urandom(32))

    async def test_database_store(self, app, db):
        await create_credential(db, "cred-1", "AK123", "SK456", app.state.master_key)
        store = DatabaseCredentialStore(db, app.state.master_key)
        resolved = await store.resolve("cred-1", "job-1")
        assert resolved.username == "AK123"
        assert await store.resolve("missing", "job-1") is None

    async def test_database_store_feeds_injector(self, app, db):
        """End to end: a stored credential lands in the block's environment."""
        from obscope.overlay import OBS_ACCESS_KEY_ID, OBS_SECRET_ACCESS_KEY
        from obscope.step import with_obs

        await create_credential(db, "cred-1", "AK123", "SK456", app.state.master_key)

        async def top(ctx):
            return await with_obs(ctx, lambda c: c.environment(), credentialsId="cred-1")

        engine = AsyncioEngine()
        store = DatabaseCredentialStore(db, app.state.master_key)
        env = await engine.run(top, job_id="job-1", credentials=store)
        assert env[OBS_ACCESS_KEY_ID] == "AK123"
        assert env[OBS_SECRET_ACCESS_KEY] == "SK456"


class TestCredentialItems:
    """Picker listing: empty choice first, then credentials visible to the job."""

    async def test_items_for_job(self, app, db):
        key = app.state.master_key
        await create_credential(db, "shared", "AK1", "s", key, description="team bucket")
        await create_credential(db, "private", "AK2", "s", key, scope=CredentialScope.JOB)
        await create_credential(db, "other", "AK3", "s", key, scope=CredentialScope.JOB)
        await create_job(db, "job-1")
        await grant_credentials(db, "job-1", ["private"])

        items = await list_credential_items(db, "job-1")

        assert items == [
            {"value": "", "name": EMPTY_ITEM_LABEL},
            {"value": "private", "name": "AK2/****"},
            {"value": "shared", "name": "AK1/**** (team bucket)"},
        ]


# --- Admin API ---


def _auth(token: str) -> dict:
    """Build authorization header."""
    return {"Authorization": f"Bearer {token}"}


class TestAdminCredentialAPI:
    """Admin credential endpoints require auth and never return secrets."""

    async def test_create(self, client, admin_token):
        resp = await client.post(
            "/api/admin/credentials",
            json={"id": "cred-1", "username": "AK123", "secret": "SK456", "description": "prod"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == "cred-1"
        assert data["username"] == "AK123"
        assert data["scope"] == "global"
        assert "SK456" not in resp.text

    async def test_create_invalid_id(self, client, admin_token):
        resp = await client.post(
            "/api/admin/credentials",
            json={"id": "has space", "username": "u", "secret": "s"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422

    async def test_create_duplicate(self, client, admin_token):
        body = {"id": "cred-1", "username": "u", "secret": "s"}
        await client.post("/api/admin/credentials", json=body, headers=_auth(admin_token))
        resp = await client.post("/api/admin/credentials", json=body, headers=_auth(admin_token))
        assert resp.status_code == 409

    async def test_list_and_get(self, client, admin_token):
        await client.post(
            "/api/admin/credentials",
            json={"id": "cred-1", "username": "u", "secret": "SK456"},
            headers=_auth(admin_token),
        )
        resp = await client.get("/api/admin/credentials", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert [c["id"] for c in resp.json()["credentials"]] == ["cred-1"]
        assert "SK456" not in resp.text

        resp = await client.get("/api/admin/credentials/cred-1", headers=_auth(admin_token))
        assert resp.status_code == 200
        resp = await client.get("/api/admin/credentials/nope", headers=_auth(admin_token))
        assert resp.status_code == 404

    async def test_update(self, client, admin_token):
        await client.post(
            "/api/admin/credentials",
            json={"id": "cred-1", "username": "u", "secret": "s"},
            headers=_auth(admin_token),
        )
        resp = await client.put(
            "/api/admin/credentials/cred-1",
            json={"secret": "rotated", "scope": "job"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["scope"] == "job"
        assert resp.json()["updated_at"] is not None

    async def test_update_missing(self, client, admin_token):
        resp = await client.put(
            "/api/admin/credentials/nope", json={"username": "x"}, headers=_auth(admin_token)
        )
        assert resp.status_code == 404

    async def test_delete(self, client, admin_token):
        await client.post(
            "/api/admin/credentials",
            json={"id": "cred-1", "username": "u", "secret": "s"},
            headers=_auth(admin_token),
        )
        resp = await client.delete("/api/admin/credentials/cred-1", headers=_auth(admin_token))
        assert resp.status_code == 204
        resp = await client.delete("/api/admin/credentials/cred-1", headers=_auth(admin_token))
        assert resp.status_code == 404

    async def test_requires_token(self, client, admin_token):
        resp = await client.post(
            "/api/admin/credentials", json={"id": "cred-1", "username": "u", "secret": "s"}
        )
        assert resp.status_code == 401
