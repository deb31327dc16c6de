"""
Encoding Companion Configuration
================================

This module handles configuration loading for the encoding companion.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    ABS_HOST          -> abs.host (required)
    ABS_TOKEN         -> abs.token (required)
    MAX_PARALLEL      -> dispatch.max_parallel
    CONVERSION_DELAY  -> dispatch.conversion_delay_ms
    EMBED_METADATA    -> dispatch.embed_metadata
    CONVERSION_MATRIX -> dispatch.conversion_matrix
    ENCODE_LIBRARY    -> dispatch.encode_library
    DRY_RUN           -> dispatch.dry_run
    EXCLUDED_CODECS   -> dispatch.excluded_codecs (comma separated)
    RESYNC_INTERVAL   -> dispatch.resync_interval_seconds
    RECONNECT_DELAY   -> session.reconnect_delay_seconds
    PORT              -> server.port
    LOG_LEVEL         -> logging.level

Example:
    from abs_companion.config import load_config

    settings = load_config()
    print(settings.abs.socket_url)
    print(settings.dispatch.max_parallel)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from abs_companion.protocol.frames import build_api_base_url, build_socket_url


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Required configuration is missing or invalid."""


# =============================================================================
# Configuration Models
# =============================================================================

class AbsConfig(BaseModel):
    """Media server connection configuration."""

    host: str = Field(
        ...,
        min_length=1,
        description="Server host, with or without http(s):// prefix",
    )
    token: str = Field(..., min_length=1, description="API token")

    @property
    def socket_url(self) -> str:
        return build_socket_url(self.host)

    @property
    def api_base_url(self) -> str:
        return build_api_base_url(self.host)


class SessionConfig(BaseModel):
    """Realtime session timing."""

    handshake_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay between socket open and namespace connect",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Delay before reconnecting after a disconnect",
    )


class DispatchConfig(BaseModel):
    """Conversion and dispatch configuration."""

    max_parallel: int = Field(default=1, ge=1, description="Maximum parallel encodes")
    conversion_delay_ms: int = Field(
        default=15000,
        ge=0,
        description="Settle delay after an item is added (milliseconds)",
    )
    embed_metadata: bool = Field(
        default=False,
        description="Embed metadata after each finished encode",
    )
    embed_delay_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Delay between encode completion and metadata embed",
    )
    conversion_matrix: str = Field(
        default="copy|0|0",
        description="Conversion rule table",
    )
    encode_library: bool = Field(
        default=False,
        description="Scan all book libraries once after startup",
    )
    dry_run: bool = Field(
        default=False,
        description="Exit once the queue is empty (drain-then-exit)",
    )
    excluded_codecs: List[str] = Field(
        default_factory=lambda: ["opus"],
        description="Codecs never converted (case-insensitive)",
    )
    resync_interval_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Interval for resyncing the running job count (0 = off)",
    )

    @field_validator("excluded_codecs", mode="before")
    @classmethod
    def _split_codecs(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        return [str(c).strip().lower() for c in value if str(c).strip()]

    @property
    def conversion_delay_seconds(self) -> float:
        return self.conversion_delay_ms / 1000.0


class ServerConfig(BaseModel):
    """Status server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Complete companion settings.

    Only the abs section is required; every other section has defaults.
    """

    abs: AbsConfig
    session: SessionConfig = Field(default_factory=SessionConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

CONFIG_SEARCH_PATHS = ("config.yaml", "config.yml", "/app/config.yaml")


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Build Settings from defaults, an optional YAML file and the environment.

    Args:
        config_path: Explicit YAML path; when None the first existing entry
            of CONFIG_SEARCH_PATHS is used

    Raises:
        ConfigurationError: ABS host/token missing, or any value invalid
    """
    if config_path is None:
        config_path = next((p for p in CONFIG_SEARCH_PATHS if Path(p).exists()), None)

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Reading settings file: {config_path}")
        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e
    else:
        logger.info("No settings file, using environment and defaults")

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    try:
        _apply_env_overrides(config_data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment value: {e}") from e

    try:
        return Settings.model_validate(config_data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Server connection
    if env_host := os.environ.get("ABS_HOST"):
        config_data.setdefault("abs", {})["host"] = env_host
    if env_token := os.environ.get("ABS_TOKEN"):
        config_data.setdefault("abs", {})["token"] = env_token

    # Dispatch settings
    dispatch = config_data.setdefault("dispatch", {})
    if env_parallel := os.environ.get("MAX_PARALLEL"):
        dispatch["max_parallel"] = int(env_parallel)
    if env_delay := os.environ.get("CONVERSION_DELAY"):
        dispatch["conversion_delay_ms"] = int(env_delay)
    if env_embed := os.environ.get("EMBED_METADATA"):
        dispatch["embed_metadata"] = _env_flag(env_embed)
    if env_matrix := os.environ.get("CONVERSION_MATRIX"):
        dispatch["conversion_matrix"] = env_matrix
    if env_library := os.environ.get("ENCODE_LIBRARY"):
        dispatch["encode_library"] = _env_flag(env_library)
    if env_dry := os.environ.get("DRY_RUN"):
        dispatch["dry_run"] = _env_flag(env_dry)
    if env_codecs := os.environ.get("EXCLUDED_CODECS"):
        dispatch["excluded_codecs"] = env_codecs
    if env_resync := os.environ.get("RESYNC_INTERVAL"):
        dispatch["resync_interval_seconds"] = float(env_resync)

    # Session settings
    if env_reconnect := os.environ.get("RECONNECT_DELAY"):
        config_data.setdefault("session", {})["reconnect_delay_seconds"] = float(env_reconnect)

    # Server settings
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Install the root handler at the configured level (json or text lines)."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def log_settings(settings: Settings) -> None:
    """Log the effective configuration with the token masked."""
    d = settings.dispatch
    logger.info("Configuration loaded:")
    logger.info(f"  Host: {settings.abs.host}")
    logger.info(f"  Token: {'********' if settings.abs.token else 'NOT SET'}")
    logger.info(f"  Max parallel: {d.max_parallel}")
    logger.info(f"  Conversion delay: {d.conversion_delay_ms}ms")
    logger.info(f"  Embed metadata: {d.embed_metadata}")
    logger.info(f"  Conversion matrix: {d.conversion_matrix}")
    logger.info(f"  Excluded codecs: {', '.join(d.excluded_codecs)}")
    logger.info(f"  Encode library: {d.encode_library}")
    logger.info(f"  Dry run: {d.dry_run}")
    logger.info(f"  WebSocket URL: {settings.abs.socket_url}")
    logger.info(f"  API base URL: {settings.abs.api_base_url}")
