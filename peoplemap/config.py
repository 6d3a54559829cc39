"""Configuration from the add-on options file and environment (no hardcoded secrets)."""

import os
import re
from pathlib import Path
from typing import Any, Optional, Tuple, Type

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

# Home Assistant writes the add-on configuration here; override for local runs.
DEFAULT_OPTIONS_FILE = "/data/options.json"
OPTIONS_FILE_ENV = "PEOPLEMAP_OPTIONS_FILE"

LOG_LEVELS = ("trace", "debug", "info", "notice", "warning", "error", "fatal")
DEFAULT_DESTINATION_SUBDIR = "people_map_plus/onedrive"

# (min, max) per clamped integer option
_INT_BOUNDS = {
    "lookback_days": (1, 30),
    "sync_interval_hours": (1, 168),
    "max_files_per_run": (1, 2000),
    "max_size": (512, 10000),
}

_SAFE_SEGMENT_CHARS = re.compile(r"[^\w.\-]", re.UNICODE)


def _sanitize_segment(segment: str) -> str:
    """Keep letters, digits, '-', '_' and '.' only."""
    return _SAFE_SEGMENT_CHARS.sub("", segment.strip())


class Settings(BaseSettings):
    """Add-on settings. Priority: init kwargs, PEOPLEMAP_* env, options.json, defaults."""

    model_config = SettingsConfigDict(env_prefix="PEOPLEMAP_", extra="ignore")

    log_level: str = "info"
    # Empty log_file = stderr only
    log_file: str = ""
    port: int = 8099

    # OneDrive / Microsoft identity platform
    onedrive_enabled: bool = False
    onedrive_tenant: str = "consumers"
    onedrive_client_id: str = ""
    onedrive_client_secret: str = ""
    onedrive_refresh_token: str = ""
    onedrive_scope: str = "offline_access Files.Read User.Read"
    onedrive_drive_id: str = ""
    onedrive_folder_path: str = "/"
    onedrive_folder_item_id: str = ""

    # Sync policy
    destination_subdir: str = DEFAULT_DESTINATION_SUBDIR
    lookback_days: int = 5
    sync_interval_hours: int = 24
    max_files_per_run: int = 500
    max_size: int = 2500
    run_sync_on_startup: bool = True

    # Storage
    media_root: Path = Path("/media")
    data_dir: Path = Path("/data")
    db_path: Path = Path("/data/people_map_plus_sync.db")
    token_file: Path = Path("/data/onedrive_tokens.json")

    # Home Assistant history (Supervisor proxy)
    supervisor_token: str = Field(
        default="",
        validation_alias=AliasChoices("supervisor_token", "SUPERVISOR_TOKEN"),
    )
    history_base_url: str = "http://supervisor/core/api/history/period"

    # HTTP timeouts (seconds) per logical client
    graph_timeout_seconds: float = 120.0
    auth_timeout_seconds: float = 30.0
    history_timeout_seconds: float = 60.0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        options_file = os.environ.get(OPTIONS_FILE_ENV, DEFAULT_OPTIONS_FILE)
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=options_file),
        )

    @field_validator(
        "onedrive_tenant",
        "onedrive_scope",
        "onedrive_client_id",
        "onedrive_client_secret",
        "onedrive_refresh_token",
        "onedrive_drive_id",
        "onedrive_folder_item_id",
        "history_base_url",
        mode="before",
    )
    @classmethod
    def _blank_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        """Blank or missing strings fall back to the field default; others are trimmed."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.model_fields[info.field_name].default
        return value.strip() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        level = str(value or "").strip().lower()
        return level if level in LOG_LEVELS else "info"

    @field_validator("lookback_days", "sync_interval_hours", "max_files_per_run", "max_size", mode="before")
    @classmethod
    def _clamp(cls, value: Any, info: ValidationInfo) -> int:
        low, high = _INT_BOUNDS[info.field_name]
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return max(low, min(high, int(value)))

    @field_validator("onedrive_folder_path", mode="before")
    @classmethod
    def _normalize_folder_path(cls, value: Any) -> str:
        """Leading slash, forward slashes, no trailing slash; blank means drive root."""
        path = str(value or "").strip().replace("\\", "/")
        if not path or path == "/":
            return "/"
        if not path.startswith("/"):
            path = "/" + path
        path = path.rstrip("/")
        return path or "/"

    @field_validator("destination_subdir", mode="before")
    @classmethod
    def _normalize_destination_subdir(cls, value: Any) -> str:
        raw = str(value or "").replace("\\", "/")
        parts = [_sanitize_segment(p) for p in raw.split("/")]
        parts = [p for p in parts if p and p not in (".", "..")]
        return "/".join(parts) if parts else DEFAULT_DESTINATION_SUBDIR

    @property
    def destination_root(self) -> Path:
        """Local root directory for downloaded photos (media_root / destination_subdir)."""
        return self.media_root.joinpath(*self.destination_subdir.split("/"))

    @property
    def has_client_id(self) -> bool:
        return bool(self.onedrive_client_id)

    @property
    def config_refresh_token(self) -> Optional[str]:
        return self.onedrive_refresh_token or None


def get_settings() -> Settings:
    """Return application settings (re-read on every call so option changes apply to the next run)."""
    return Settings()
