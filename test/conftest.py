"""
Pytest configuration and fixtures for plugin server tests
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Point settings at a throwaway database and plugin directory BEFORE importing the app
TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="plugin-server-tests-"))
TEST_DB_PATH = TEST_DATA_DIR / "test.db"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["PLUGINS_DIR"] = str(TEST_DATA_DIR / "plugins")
os.environ["ENVIRONMENT"] = "production"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["CHECK_FOR_PLUGIN_UPDATES"] = "false"

import plugin_server.models  # noqa: E402, F401
from main import app  # noqa: E402
from plugin_server.config import settings  # noqa: E402
from plugin_server.database import Base  # noqa: E402
from utils.auth import make_auth_headers  # noqa: E402

# Synchronous engine on the same file, used only to reset the schema between tests
sync_engine = create_engine(f"sqlite:///{TEST_DB_PATH}", poolclass=NullPool)


@pytest.fixture(autouse=True)
def clean_database():
    """Give every test an empty schema."""
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield


@pytest.fixture(autouse=True)
def plugins_dir(tmp_path_factory, monkeypatch) -> Path:
    """Fresh external plugin directory for each test, kept apart from tmp_path."""
    directory = tmp_path_factory.mktemp("plugins")
    monkeypatch.setattr(settings, "plugins_dir", directory)
    return directory


@pytest.fixture
def client():
    """Test client with the application lifespan (plugin loading) running."""
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def viewer_headers() -> dict:
    return make_auth_headers("Viewer")


@pytest.fixture
def editor_headers() -> dict:
    return make_auth_headers("Editor")


@pytest.fixture
def admin_headers() -> dict:
    return make_auth_headers("Admin")


@pytest.fixture
def server_admin_headers() -> dict:
    return make_auth_headers("Admin", server_admin=True)
