import os
import sys
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

from app.config.settings import get_settings
from app.db.base import Base
from app.db.session import get_engine, reset_engine, reset_sessionmaker
from app.main import create_app
from app.mcp.client import ClientOptions

FAKE_SERVER = Path(__file__).parent / "fixtures" / "fake_mcp_server.py"


@pytest.fixture(scope="session", autouse=True)
def test_env(tmp_path_factory: pytest.TempPathFactory) -> None:
    db_path = tmp_path_factory.mktemp("db") / "test_desk.db"
    os.environ["DATABASE_URL"] = f"sqlite:///{db_path}"
    os.environ["MCP_REQUEST_TIMEOUT_SECONDS"] = "10"
    os.environ["MCP_SHUTDOWN_GRACE_SECONDS"] = "1"
    get_settings.cache_clear()
    reset_engine()
    reset_sessionmaker()
    import app.db.models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


@pytest.fixture
def fake_server() -> tuple[str, list[str]]:
    """(command, args) launching the scriptable fake MCP server."""
    return sys.executable, [str(FAKE_SERVER)]


@pytest.fixture
def fast_options() -> ClientOptions:
    return ClientOptions(startup_timeout=5.0, request_timeout=5.0, grace_period=0.5)


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client
