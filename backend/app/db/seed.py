from __future__ import annotations

import json
import logging

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from app.config.defaults import (
    DEFAULT_FILESYSTEM_SERVER_NAME,
    filesystem_server_args,
)
from app.config.settings import get_settings
from app.db.base import Base
from app.db.repositories.mcp_repo import MCPRepository
from app.utils.ids import generate_id
from app.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


def _ensure_schema(db: Session) -> None:
    """Create missing tables on a fresh database that Alembic has not touched yet."""
    bind = db.get_bind()
    if "mcp_servers" in set(inspect(bind).get_table_names()):
        return
    # Importing models ensures all declarative mappings are registered.
    import app.db.models  # noqa: F401

    Base.metadata.create_all(bind=bind, checkfirst=True)
    logger.info("Created missing database tables during startup seed")


def seed_app_data(db: Session) -> None:
    _ensure_schema(db)
    settings = get_settings()
    repo = MCPRepository(db)
    if repo.get_server_by_name(DEFAULT_FILESYSTEM_SERVER_NAME) is None:
        repo.create_server(
            id=generate_id("mcp"),
            name=DEFAULT_FILESYSTEM_SERVER_NAME,
            command="npx",
            args_json=json.dumps(filesystem_server_args(settings.default_filesystem_root)),
            env_encrypted="",
            description="Provides file system operations and navigation",
            category="filesystem",
            created_at=utc_now_iso(),
        )
        logger.info("Seeded default filesystem MCP server")
