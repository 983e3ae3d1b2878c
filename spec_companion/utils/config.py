"""Configuration utilities for loading and saving YAML settings."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from spec_companion.config import ServerConfig
from spec_companion.errors import ValidationError
from spec_companion.models import AppSettings

logger = logging.getLogger(__name__)


def _settings_path(config_path: str | Path | None) -> Path:
    return Path(config_path) if config_path is not None else ServerConfig.SETTINGS_PATH


def load_settings(config_path: str | Path | None = None) -> AppSettings:
    """Load user settings from a YAML file.

    Args:
        config_path: Path to the settings file. If None, uses ServerConfig.SETTINGS_PATH.

    Returns:
        AppSettings, with defaults for anything missing. A missing or unreadable
        file yields the defaults.
    """
    path = _settings_path(config_path)

    if not os.path.exists(path):
        return AppSettings()

    try:
        with open(path) as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not load settings from %s: %s", path, e)
        return AppSettings()

    try:
        return AppSettings.model_validate(data)
    except PydanticValidationError as e:
        logger.warning("Invalid settings in %s, using defaults: %s", path, e)
        return AppSettings()


def save_settings(settings: AppSettings | dict[str, Any], config_path: str | Path | None = None) -> AppSettings:
    """Validate and persist user settings.

    Args:
        settings: Settings model or a raw mapping to validate.
        config_path: Path to the settings file.

    Returns:
        The validated settings that were written.

    Raises:
        ValidationError: If a field (for example default_framework) is invalid.
    """
    if not isinstance(settings, AppSettings):
        try:
            settings = AppSettings.model_validate(settings)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid settings: {e.errors()[0]['msg']}") from e

    path = _settings_path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Write atomically
    temp_path = path.with_suffix(path.suffix + ".tmp")
    with open(temp_path, "w") as f:
        yaml.safe_dump(settings.model_dump(mode="json"), f, sort_keys=False)
    os.replace(temp_path, path)

    logger.info("Saved settings to %s", path)
    return settings
