"""Shared test fixtures for obscope."""

import os
import tempfile

import pytest
from httpx import ASGITransport, AsyncClient

# Set data dir before any imports that read it
_tmpdir = tempfile.mkdtemp()
os.environ["OBSCOPE_DATA_DIR"] = _tmpdir


@pytest.fixture(autouse=True)
def _reset_db_module():
    """Reset the db module state between tests."""
    from obscope import db
    db._db = None


@pytest.fixture
async def app(tmp_path):
    """Create a fresh app instance with a clean temp database."""
    import obscope.db as db_module

    os.environ["OBSCOPE_DATA_DIR"] = str(tmp_path)
    db_module.DATA_DIR = tmp_path
    db_module.DB_PATH = tmp_path / "obscope.db"
    db_module._db = None

    from obscope.app import create_app
    application = create_app()

    async with application.router.lifespan_context(application):
        yield application

    db_module._db = None


@pytest.fixture
async def db(app):
    """The app's open database connection."""
    from obscope.db import get_db
    return await get_db()


@pytest.fixture
async def client(app):
    """HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def admin_token(client) -> str:
    """Set up admin and return a valid session token."""
    resp = await client.post(
        "/api/admin/setup",
        json={"password": "testpassword123"},
    )
    assert resp.status_code == 200
    return resp.json()["token"]
