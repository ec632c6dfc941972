"""Settings management for the image server"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from errors import StorageError, ValidationError
from image_codec import OUTPUT_FORMATS, normalize_format

logger = logging.getLogger("ImageServer")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "image-edit-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"

ENV_PREFIX = "IMAGE_SERVER_"

# Keys that only take effect at startup
STARTUP_ONLY_KEYS = ("data_dir", "output_format", "host", "port")


def _positive_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Setting '{key}' must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Setting '{key}' must be a positive integer, got {value!r}")
    if number <= 0 or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"Setting '{key}' must be a positive integer, got {value!r}")
    return number


def _quality(key: str, value: Any) -> int:
    number = _positive_int(key, value)
    if number > 100:
        raise ValidationError(f"Setting '{key}' must be between 1 and 100, got {value!r}")
    return number


def _output_format(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"Setting '{key}' must be one of {sorted(OUTPUT_FORMATS)}, got {value!r}")
    return normalize_format(value)


def _non_empty_str(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Setting '{key}' must be a non-empty string, got {value!r}")
    return value.strip()


VALIDATORS: Dict[str, Callable[[str, Any], Any]] = {
    "data_dir": _non_empty_str,
    "max_upload_bytes": _positive_int,
    "max_width": _positive_int,
    "max_height": _positive_int,
    "output_format": _output_format,
    "output_quality": _quality,
    "host": _non_empty_str,
    "port": _positive_int,
}


class SettingsManager:
    """Manages settings with precedence: runtime > config file > env > hardcoded"""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._runtime_settings: Dict[str, Any] = {}
        self._hardcoded_settings: Dict[str, Any] = {
            "data_dir": "./data",
            "max_upload_bytes": 5 * 1024 * 1024,
            "max_width": 2000,
            "max_height": 2000,
            "output_format": "webp",
            "output_quality": 80,
            "host": "127.0.0.1",
            "port": 9000,
        }
        self._env_settings = self._get_env_settings()
        self._config_settings = self._load_config_settings()

    def _load_config_settings(self) -> Dict[str, Any]:
        """Load settings from config file, dropping invalid entries"""
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load config file {self.config_file}: {e}")
            return {}

        raw = config.get("settings", {}) if isinstance(config, dict) else {}
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring non-object 'settings' in {self.config_file}")
            return {}
        return self._validated(raw, source=str(self.config_file))

    def _get_env_settings(self) -> Dict[str, Any]:
        """Load settings from IMAGE_SERVER_* environment variables"""
        raw = {}
        for key in VALIDATORS:
            value = os.getenv(ENV_PREFIX + key.upper())
            if value:
                raw[key] = value
        return self._validated(raw, source="environment")

    def _validated(self, raw: Dict[str, Any], source: str) -> Dict[str, Any]:
        settings = {}
        for key, value in raw.items():
            if key not in VALIDATORS:
                logger.warning(f"Ignoring unknown setting '{key}' from {source}")
                continue
            try:
                settings[key] = VALIDATORS[key](key, value)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid setting from {source}: {e}")
        return settings

    def get(self, key: str) -> Any:
        """Get effective value with precedence: runtime > config > env > hardcoded"""
        if key in self._runtime_settings:
            return self._runtime_settings[key]
        if key in self._config_settings:
            return self._config_settings[key]
        if key in self._env_settings:
            return self._env_settings[key]
        return self._hardcoded_settings.get(key)

    def get_all(self) -> Dict[str, Any]:
        """Get all effective settings (merged from all sources)"""
        result = self._hardcoded_settings.copy()
        result.update(self._env_settings)
        result.update(self._config_settings)
        result.update(self._runtime_settings)
        return result

    @property
    def data_dir(self) -> Path:
        return Path(self.get("data_dir"))

    @property
    def images_dir(self) -> Path:
        return self.data_dir / "images"

    @property
    def metadata_file(self) -> Path:
        return self.data_dir / "data.json"

    def validate_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and coerce settings without applying them.

        Raises:
            ValidationError: Listing every unknown key and invalid value
        """
        if not isinstance(settings, dict):
            raise ValidationError(f"Settings must be an object, got {type(settings).__name__}")
        errors = []
        validated = {}
        for key, value in settings.items():
            if key not in VALIDATORS:
                errors.append(f"Unknown setting '{key}'")
                continue
            try:
                validated[key] = VALIDATORS[key](key, value)
            except ValidationError as e:
                errors.append(str(e))
        if errors:
            raise ValidationError("; ".join(errors))
        return validated

    def set_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Set runtime settings.

        Raises:
            ValidationError: If any key is unknown, startup-only or invalid.
                Nothing is applied in that case.
        """
        validated = self.validate_settings(settings)
        startup_only = [key for key in validated if key in STARTUP_ONLY_KEYS]
        if startup_only:
            raise ValidationError(
                f"Settings {startup_only} can only be changed before startup; persist them instead"
            )

        self._runtime_settings.update(validated)
        logger.info(f"Updated runtime settings: {validated}")
        return validated

    def persist_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and write settings to the config file.

        Persisted values apply on the next start. Startup-only keys are
        accepted here.
        """
        validated = self.validate_settings(settings)

        config: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
            except (json.JSONDecodeError, IOError):
                config = {}
        if not isinstance(config, dict):
            config = {}
        if not isinstance(config.get("settings"), dict):
            config["settings"] = {}
        config["settings"].update(validated)

        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
        except OSError as e:
            raise StorageError(f"Failed to write config file {self.config_file}: {e}")
        logger.info(f"Persisted settings to {self.config_file}")
        return validated
