"""Server settings, read from the environment."""

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Streamable HTTP server settings.

    All settings can be configured via environment variables with the prefix MCP_.
    For example, MCP_STATELESS=false will start the server in stateful mode. The
    port is also read from PORT.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Server settings
    server_name: str = "mcp-streamablehttp-sample-server"
    server_version: str = "1.0.0"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = Field(default=3001, validation_alias=AliasChoices("MCP_PORT", "PORT"))
    path: str = "/mcp"

    # StreamableHTTP settings
    stateless: bool = True
    """Define if the server should create a new handler per request."""
