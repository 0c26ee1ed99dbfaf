"""
Shared configuration management for the OSM GeoJSON tooling.
"""

import re
from typing import Any, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_OUT_DIR = "./geojson"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """Parse ``90``, ``"90s"``, ``"2m"``, ``"1h"`` or ``"250ms"`` into seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]
    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GEOJSON_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"


class GeoJSONConfig(BaseConfig):
    """Resolution and serving options shared by the CLI and the HTTP service."""

    # Upstream map-data service
    osm_api_url: str = "https://api.openstreetmap.org/api/0.6"
    user_agent: str = "osm-geojson/0.1.0"
    upstream_timeout: float = Field(default=30.0, gt=0)
    upstream_max_attempts: int = Field(default=3, ge=1)
    upstream_base_delay: float = Field(default=0.5, ge=0)
    upstream_max_delay: float = Field(default=5.0, ge=0)
    upstream_concurrency: int = Field(default=4, ge=1)

    # Resolution
    raw: bool = False
    separated: bool = False
    out_dir: str = DEFAULT_OUT_DIR
    max_depth: int = Field(default=0, ge=0)

    # Serving
    address: str = "127.0.0.1:8181"
    origin: str = "*"
    rate: float = Field(default=10.0, gt=0)
    rate_burst: int = Field(default=5, ge=1)
    rate_ttl: float = 120.0
    prefix: str = "/static"
    resolve_on_miss: bool = False
    trust_proxy_headers: bool = False

    @field_validator("rate_ttl", mode="before")
    @classmethod
    def _parse_rate_ttl(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        return value if value != "/" else ""

    def bind_address(self) -> Tuple[str, int]:
        """Split ``address`` into a (host, port) pair."""
        host, _, port = self.address.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"invalid address: {self.address!r}")
        return host.strip("[]"), int(port)


def get_config(**overrides: Any) -> GeoJSONConfig:
    """Build configuration from the environment with explicit overrides applied."""
    return GeoJSONConfig(**{k: v for k, v in overrides.items() if v is not None})


def describe(config: GeoJSONConfig, fields: Optional[Tuple[str, ...]] = None) -> dict:
    """Return a loggable view of the configuration."""
    data = config.model_dump()
    if fields:
        data = {k: data[k] for k in fields if k in data}
    return data
