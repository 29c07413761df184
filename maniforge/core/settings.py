"""User settings and GitHub token resolution."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .download import DEFAULT_DOWNLOAD_DIR
from .errors import InputValidationError
from .serialization import ManifestFormat

logger = logging.getLogger("maniforge.settings")

SETTINGS_ENV = "MANIFORGE_SETTINGS"
TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
TOKEN_FILE_NAME = "token"


class RepositorySettings(BaseModel):
    owner: str = "microsoft"
    name: str = "winget-pkgs"


class ManifestSettings(BaseModel):
    format: ManifestFormat = ManifestFormat.YAML


class TelemetrySettings(BaseModel):
    disable: bool = False


class DownloadSettings(BaseModel):
    max_size_mb: int | None = Field(None, ge=1)
    directory: Path = DEFAULT_DOWNLOAD_DIR


class Settings(BaseModel):
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    manifest: ManifestSettings = Field(default_factory=ManifestSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    cleanup_days: int = Field(7, ge=1)

    model_config = ConfigDict(extra="allow")


def settings_path() -> Path:
    override = os.environ.get(SETTINGS_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "maniforge" / "settings.yaml"


def load_settings(path: Path | None = None) -> Settings:
    """Read settings from YAML or JSON; a missing file yields defaults."""
    path = path or settings_path()
    if not path.exists():
        logger.debug("No settings file at %s; using defaults", path)
        return Settings()
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text or "{}")
        else:
            data = yaml.safe_load(text) or {}
        return Settings.model_validate(data)
    except (json.JSONDecodeError, yaml.YAMLError, ValidationError) as exc:
        raise InputValidationError(f"Invalid settings file {path}: {exc}") from exc


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    path = path or settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json")
    if path.suffix.lower() == ".json":
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def token_path(settings_file: Path | None = None) -> Path:
    return (settings_file or settings_path()).parent / TOKEN_FILE_NAME


def resolve_token(explicit: str | None = None, settings_file: Path | None = None) -> str | None:
    """Token from ``--token``, then the environment, then the cached token file."""
    if explicit:
        return explicit.strip()
    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value.strip()
    cached = token_path(settings_file)
    if cached.exists():
        value = cached.read_text(encoding="utf-8").strip()
        return value or None
    return None


def store_token(token: str, settings_file: Path | None = None) -> Path:
    path = token_path(settings_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(token.strip() + "\n", encoding="utf-8")
    path.chmod(0o600)
    return path
