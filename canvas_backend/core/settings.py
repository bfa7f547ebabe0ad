"""Application settings using Pydantic BaseSettings."""

import json
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration loaded from CANVAS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CANVAS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    log_file: Optional[str] = Field(default=None)
    cors_origins: str = Field(default="http://localhost:3000")

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./canvas.db")
    database_echo: bool = Field(default=False)
    auto_create_tables: bool = Field(default=True)
    run_data_migrations: bool = Field(default=True)

    # Authentication
    session_cookie_name: str = Field(default="canvas_session")

    # Tool execution
    tool_timeout_seconds: float = Field(default=30.0)
    # When true the timeout applies to each event instead of the whole invocation.
    tool_per_event_timeout: bool = Field(default=False)
    tool_cleanup_grace_seconds: float = Field(default=2.0)
    shutdown_drain_seconds: float = Field(default=10.0)

    # Tool registry
    registry_cache_ttl_seconds: float = Field(default=60.0)
    provider_timeout_seconds: float = Field(default=5.0)
    # JSON list of {"id": ..., "url": ...}
    mcp_servers: str = Field(default="")

    # Artifact versions
    version_write_attempts: int = Field(default=3)
    version_write_backoff_seconds: float = Field(default=0.05)

    # Streaming
    stream_max_pending_frames: int = Field(default=32)
    sse_heartbeat_seconds: float = Field(default=15.0)

    # Agent access
    readonly_agents_shared: bool = Field(default=False)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def mcp_servers_list(self) -> List[Dict[str, Any]]:
        """Parse the configured MCP servers."""
        if not self.mcp_servers.strip():
            return []
        return json.loads(self.mcp_servers)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        vv = (v or "").strip().lower()
        if vv not in {"development", "staging", "production", "test"}:
            raise ValueError("ENVIRONMENT must be one of: development, staging, production, test")
        return vv

    @field_validator("mcp_servers")
    @classmethod
    def validate_mcp_servers(cls, v: str) -> str:
        if not (v or "").strip():
            return ""
        try:
            servers = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"MCP_SERVERS must be JSON: {e}") from e
        if not isinstance(servers, list):
            raise ValueError("MCP_SERVERS must be a JSON list")
        for server in servers:
            if not isinstance(server, dict) or not server.get("id") or not server.get("url"):
                raise ValueError("each MCP server needs an 'id' and a 'url'")
        return v

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        if self.tool_timeout_seconds <= 0:
            raise ValueError("TOOL_TIMEOUT_SECONDS must be positive")
        if self.version_write_attempts < 1:
            raise ValueError("VERSION_WRITE_ATTEMPTS must be at least 1")
        if self.stream_max_pending_frames < 1:
            raise ValueError("STREAM_MAX_PENDING_FRAMES must be at least 1")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
