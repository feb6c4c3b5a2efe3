"""Engine configuration loaded from TOML with environment overrides."""
from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
BASE_URL_ENV = "LOCATION_API_BASE_URL"


class BackendSettings(BaseModel):
    """Where the location service lives and how long each call may take."""

    base_url: str = "http://localhost:4000/api"
    user_agent: str = "location-engine/0.1"
    search_timeout_seconds: float = Field(default=10.0, gt=0)
    resolve_timeout_seconds: float = Field(default=10.0, gt=0)
    listing_timeout_seconds: float = Field(default=15.0, gt=0)
    max_connections: int = Field(default=10, gt=0)
    # The service matches country by its stored name, not by ISO code.
    country_names: Dict[str, str] = Field(default_factory=lambda: {"IN": "India"})


class ArbiterSettings(BaseModel):
    debounce_ms: int = Field(default=300, ge=0)
    min_query_length: int = Field(default=2, ge=1)
    default_country: str = "IN"
    search_country: Optional[str] = None
    suggestion_limit: int = Field(default=20, gt=0)
    cancel_superseded: bool = True

    @field_validator("search_country", mode="before")
    @classmethod
    def _empty_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CacheSettings(BaseModel):
    ttl_seconds: float = Field(default=300.0, gt=0)


class MetricsSettings(BaseModel):
    export_dir: Path = Path("data/metrics")


class EngineSettings(BaseModel):
    """Validated settings for one engine session."""

    backend: BackendSettings = Field(default_factory=BackendSettings)
    engine: ArbiterSettings = Field(default_factory=ArbiterSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> EngineSettings:
    """Read the TOML configuration file, falling back to defaults when absent."""
    raw: dict = {}
    if path.exists():
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    base_url = os.environ.get(BASE_URL_ENV)
    if base_url:
        raw.setdefault("backend", {})["base_url"] = base_url
    try:
        return EngineSettings(**raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid settings in {path}: {exc}") from exc
