"""Settings file loading with validation.

A deployment may ship its naming constants as a small YAML file instead
of environment variables. The file is read once at startup.

SECURITY: File size is bounded before reading and the content is parsed
with yaml.safe_load only.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

MAX_SETTINGS_FILE_SIZE_BYTES = 64 * 1024


class SettingsLoadError(Exception):
    """Raised when the settings file cannot be loaded or fails validation."""

    pass


class SyncSettings(BaseModel):
    """Values a settings file may provide."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    registry_table: str | None = Field(None, alias="registryTable", min_length=1)
    bucket_prefix: str | None = Field(None, alias="bucketPrefix", min_length=1)
    managed_sid: str | None = Field(None, alias="managedSid", min_length=1)
    default_region: str | None = Field(None, alias="defaultRegion", min_length=1)

    def as_config_values(self) -> dict[str, str]:
        """Return the provided values keyed by Config field name."""
        return {key: value for key, value in self.model_dump().items() if value is not None}


def load_settings(path: Path) -> SyncSettings:
    """Load and validate a settings file.

    Both a flat mapping and the ``apiVersion``/``kind``/``spec`` wrapper
    are accepted.

    Args:
        path: Path to the YAML settings file.

    Returns:
        Validated settings.

    Raises:
        SettingsLoadError: If the file is missing, too large, not YAML,
            not a mapping, or fails validation.
    """
    if not path.exists():
        raise SettingsLoadError(f"Settings file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SettingsLoadError(f"Failed to stat settings file {path}: {e}") from e

    if file_size > MAX_SETTINGS_FILE_SIZE_BYTES:
        raise SettingsLoadError(
            f"Settings file exceeds maximum size of {MAX_SETTINGS_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SettingsLoadError(f"Failed to read settings file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SettingsLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SettingsLoadError(f"Settings file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        settings_data = raw_data.get("spec", {})
        if not isinstance(settings_data, dict):
            raise SettingsLoadError(f"Spec section must be a mapping: {path}")
    else:
        settings_data = raw_data

    try:
        settings = SyncSettings.model_validate(settings_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SettingsLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded settings from %s", path)
    return settings
