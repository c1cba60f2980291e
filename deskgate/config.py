"""deskgate configuration management.

Configuration sources (in priority order):
1. Environment variables (DESKGATE_ prefix, "__" for nesting)
2. Config file (config.yaml)
3. Defaults
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    # Host name used in generated routing URLs when public_url is unset
    public_host: str = "localhost"
    # Full override for the externally reachable base URL (e.g. behind a LB)
    public_url: str | None = None

    def base_url(self) -> str:
        if self.public_url:
            return self.public_url.rstrip("/")
        return f"http://{self.public_host}:{self.port}"


class DockerConfig(BaseModel):
    """Docker driver configuration."""

    socket: str = "unix:///var/run/docker.sock"


class SessionConfig(BaseModel):
    """Desktop session provisioning configuration."""

    image: str = "x11-web-bridge"
    base_port: int = 6080
    # Ports inside the container; bound to host_port / aux_port on the host
    container_web_port: int = 6080
    container_x11_port: int = 6001
    name_prefix: str = "x11-bridge"
    shm_size_bytes: int = 256 * 1024 * 1024
    stop_grace_seconds: int = 5
    # Display server inside the container needs time to bind (not polled)
    warmup_seconds: float = 5.0
    # When False, every cleanup path removes the container after stopping it
    auto_remove: bool = True
    label_key: str = "deskgate.managed"
    label_value: str = "true"
    shutdown_timeout_seconds: float = 30.0
    progress_queue_size: int = 16


class DisplayConfig(BaseModel):
    """Host-side display client (auxiliary process) configuration."""

    enabled: bool = True
    command: str = "xterm"
    font: str = "Monospace"
    font_size: int = 12


class GatewayConfig(BaseModel):
    """Tunnel gateway configuration."""

    prefix: str = "proxy"
    landing_page: str = "vnc.html"
    websocket_path: str = "websockify"
    connect_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 60.0
    proxy_cache_size: int = 256


class SecurityConfig(BaseModel):
    """Security configuration."""

    # Shared with the identity layer that issues principal session cookies
    session_secret: str = "dev-secret-change-in-production"
    cookie_name: str = "connect.sid"
    # Principal ids or emails allowed to use the admin endpoints
    admin_users: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_output: bool = False


class Settings(BaseSettings):
    """deskgate application settings."""

    model_config = SettingsConfigDict(
        env_prefix="DESKGATE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values loaded from the YAML file (init kwargs)
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def is_admin(self, *identifiers: str | None) -> bool:
        """Check whether any of the given principal identifiers is an admin."""
        allowed = {u.strip() for u in self.security.admin_users if u.strip()}
        return any(i in allowed for i in identifiers if i)


def _load_config_file() -> dict:
    """Load configuration from YAML file if exists.

    Looks for config file in order:
    1. DESKGATE_CONFIG_FILE environment variable
    2. ./config.yaml
    3. /etc/deskgate/config.yaml
    """
    config_paths = [
        os.environ.get("DESKGATE_CONFIG_FILE"),
        Path("config.yaml"),
        Path("/etc/deskgate/config.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}

    return {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Configuration is loaded from:
    1. YAML config file (if exists)
    2. Environment variables (override)
    3. Defaults
    """
    return Settings(**_load_config_file())
