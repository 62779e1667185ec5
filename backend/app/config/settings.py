from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.config.defaults import (
    MCP_CLIENT_NAME,
    MCP_CLIENT_VERSION,
    MCP_PROTOCOL_VERSION,
)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_env: str = "dev"
    app_name: str = "desk-backend"
    database_url: str = "sqlite:///./desk.db"
    cors_origins: list[str] = [
        "http://localhost:1420",
        "http://127.0.0.1:1420",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "tauri://localhost",
    ]
    fs_allowed_roots: list[str] = []
    default_filesystem_root: str = "/"

    access_key_validation_url: str = ""
    access_key_timeout_seconds: float = 15.0

    mcp_protocol_version: str = MCP_PROTOCOL_VERSION
    mcp_client_name: str = MCP_CLIENT_NAME
    mcp_client_version: str = MCP_CLIENT_VERSION
    mcp_startup_timeout_seconds: float | None = 10.0
    # 0 or unset disables the per-request timeout
    mcp_request_timeout_seconds: float | None = 60.0
    mcp_shutdown_grace_seconds: float = 2.0
    mcp_max_line_bytes: int = 16 * 1024 * 1024
    mcp_stderr_tail_lines: int = 50


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings()
