"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "FIELDARC_"
DEFAULT_CONFIG_PATH = Path("~/.config/field-archive/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("graph", "tenant_id"): "graph_tenant_id",
    ("graph", "client_id"): "graph_client_id",
    ("graph", "client_secret"): "graph_client_secret",
    ("graph", "timeout_seconds"): "request_timeout_seconds",
    ("sharepoint", "site_url"): "sharepoint_site_url",
    ("sharepoint", "library"): "sharepoint_library",
    ("sharepoint", "watch_folder"): "sharepoint_watch_folder",
    ("enrichment", "api_key"): "anthropic_api_key",
    ("enrichment", "model"): "anthropic_model",
    ("watcher", "poll_interval_seconds"): "poll_interval_seconds",
    ("watcher", "inter_file_delay_seconds"): "inter_file_delay_seconds",
    ("watcher", "autostart"): "watcher_autostart",
    ("extraction", "min_text_chars"): "min_text_chars",
    ("extraction", "min_embedded_image_bytes"): "min_embedded_image_bytes",
    ("extraction", "raster_dpi"): "raster_dpi",
    ("extraction", "ocr_language"): "ocr_language",
    ("extraction", "ocr_timeout_seconds"): "ocr_timeout_seconds",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".field-archive" / "archive.db")

    graph_tenant_id: str | None = None
    graph_client_id: str | None = None
    graph_client_secret: str | None = None
    sharepoint_site_url: str | None = None
    sharepoint_library: str = "Shared Documents"
    sharepoint_watch_folder: str = "FSA - State Committee"
    request_timeout_seconds: float = Field(default=60.0, gt=0)

    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-sonnet-4-20250514"

    poll_interval_seconds: float = Field(default=300.0, gt=0)
    inter_file_delay_seconds: float = Field(default=15.0, ge=0)
    watcher_autostart: bool = False

    min_text_chars: int = Field(default=20, ge=0)
    min_embedded_image_bytes: int = Field(default=5 * 1024, ge=0)
    raster_dpi: int = Field(default=300, gt=0)
    ocr_language: str = "eng"
    ocr_timeout_seconds: float = Field(default=120.0, ge=0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @property
    def graph_configured(self) -> bool:
        return all(
            (
                self.graph_tenant_id,
                self.graph_client_id,
                self.graph_client_secret,
                self.sharepoint_site_url,
            )
        )

    @property
    def enrichment_configured(self) -> bool:
        return bool(self.anthropic_api_key)

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with FIELDARC_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
