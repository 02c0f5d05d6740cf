"""
Manages loading, saving, and validating the application configuration using Pydantic.

This module defines the configuration schema as a Pydantic model (`Settings`)
and provides a manager class (`ConfigManager`) to handle persistence to a JSON file.
"""

import os
import json
import time
import logging
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator, ValidationError

from .constants import FONT_SIZE_MIN, FONT_SIZE_MAX, FONT_SIZE_DEFAULT


class Settings(BaseModel):
    """
    Defines the application's configuration schema using Pydantic.

    This class provides type hints, default values, and validation logic for all
    configuration settings.
    """
    download_dir: Optional[Path] = None
    font_size: int = FONT_SIZE_DEFAULT
    remember_queue: bool = True
    use_system_binaries: bool = False
    log_level: str = 'INFO'

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Ensures log_level is a valid logging level string."""
        upper_value = value.upper()
        allowed_levels: List[str] = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if upper_value not in allowed_levels:
            raise ValueError(f"'{value}' is not a valid log level. Must be one of {allowed_levels}.")
        return upper_value

    @field_validator('font_size', mode='before')
    @classmethod
    def clamp_font_size(cls, value: Any) -> int:
        """Coerces the font size to an int within the supported range."""
        try:
            size = int(value)
        except (TypeError, ValueError):
            return FONT_SIZE_DEFAULT
        return max(FONT_SIZE_MIN, min(FONT_SIZE_MAX, size))

    @field_validator('download_dir', mode='before')
    @classmethod
    def validate_download_dir(cls, value: Any) -> Optional[Path]:
        """Drops a configured download directory that no longer exists."""
        if value in (None, ''):
            return None
        path = Path(value)
        if not path.is_dir():
            return None
        return path


def resolve_download_dir(settings: Settings) -> Path:
    """
    Returns the directory suggested for new jobs.

    Uses the configured directory when it is writable, otherwise falls back to
    ~/Downloads, creating it when necessary.
    """
    if settings.download_dir is not None and os.access(settings.download_dir, os.W_OK):
        return settings.download_dir
    default_dir = Path.home() / 'Downloads'
    default_dir.mkdir(parents=True, exist_ok=True)
    return default_dir


class ConfigManager:
    """Handles loading and saving the application configuration file."""
    def __init__(self, config_path: Path):
        """
        Initializes the ConfigManager.

        Args:
            config_path: The path to the configuration file.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        # Ensure the configuration directory exists
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Settings:
        """
        Loads config from file, merges with defaults, validates, and returns it.

        If the file doesn't exist, is invalid, or an error occurs, a default
        configuration is returned. Invalid files are backed up.

        Returns:
            A validated Settings object.
        """
        if not self.config_path.exists():
            self.logger.info("Config file not found. Creating with default settings.")
            default_settings = Settings()
            self.save(default_settings)
            return default_settings

        try:
            config_data = json.loads(self.config_path.read_text(encoding='utf-8'))
            return Settings.model_validate(config_data)
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.config_path}: {e}. Backing up and using defaults.")
            try:
                backup_path = self.config_path.with_suffix(f".{int(time.time())}.bak")
                self.config_path.rename(backup_path)
                self.logger.info(f"Backed up corrupted config to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted config file: {backup_e}")
            return Settings()

    def save(self, settings: Settings):
        """
        Saves the provided settings object to the config file.

        Args:
            settings: The Settings object to save.
        """
        try:
            self.config_path.write_text(settings.model_dump_json(indent=4), encoding='utf-8')
        except IOError as e:
            self.logger.error(f"Error saving config file to {self.config_path}: {e}")
