from typing import Optional

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class MCPServer(Base):
    """Saved launch configuration for a stdio MCP server."""

    __tablename__ = "mcp_servers"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    command: Mapped[str] = mapped_column(Text, nullable=False)
    args_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    # Fernet-encrypted JSON object of env overrides
    env_encrypted: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(Text, nullable=False, default="custom")
    enabled: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    last_connected_at: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
