"""Settings loaded from a YAML configuration file."""

import logging
import pathlib
from dataclasses import dataclass, field, fields

import yaml

from .catalog import DEFAULT_API_BASE, REQUEST_TIMEOUT_SECONDS
from .types import (
    DEFAULT_LANGUAGE,
    DEFAULT_MAX_SLOTS,
    DEFAULT_QUALITY_PREFERENCES,
    PROBE_INTERVAL_SECONDS,
    PROBE_TIMEOUT_SECONDS,
    RECOVERY_INTERVAL_SECONDS,
    RECOVERY_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "matchcast.yaml"


@dataclass
class Settings:
    """Tunable settings for catalog access, probing and sessions.

    Attributes:
        api_base: Base URL of the catalog API.
        request_timeout: Catalog request timeout in seconds.
        probe_timeout: Upper bound for a single reachability probe in seconds.
        probe_interval: Seconds between probe sweeps.
        recovery_interval: Seconds between recovery sweeps of offline endpoints.
        recovery_window: Seconds without success before a success counts as recovery.
        max_slots: Maximum concurrent view slots in a session.
        max_workers: Worker threads for probes and catalog requests.
        preferred_language: Language tag preferred when ranking streams.
        quality_preferences: Quality tags in order of preference.
    """

    api_base: str = DEFAULT_API_BASE
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    probe_timeout: float = PROBE_TIMEOUT_SECONDS
    probe_interval: float = PROBE_INTERVAL_SECONDS
    recovery_interval: float = RECOVERY_INTERVAL_SECONDS
    recovery_window: float = RECOVERY_WINDOW_SECONDS
    max_slots: int = DEFAULT_MAX_SLOTS
    max_workers: int = 5
    preferred_language: str = DEFAULT_LANGUAGE
    quality_preferences: list[str] = field(default_factory=lambda: list(DEFAULT_QUALITY_PREFERENCES))


def _check_type(name: str, value: object, expected: type) -> None:
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return
    if expected is list:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            msg = f"'{name}' must be a list of strings"
            raise TypeError(msg)
        return
    if not isinstance(value, expected) or isinstance(value, bool):
        msg = f"'{name}' must be of type {expected.__name__}"
        raise TypeError(msg)


def load_settings(yaml_path: pathlib.Path | None = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    Args:
        yaml_path: Path to the configuration file. If None, looks for
            matchcast.yaml in the working directory and falls back to
            defaults when it is absent.

    Returns:
        The loaded Settings.

    Raises:
        FileNotFoundError: If an explicit yaml_path doesn't exist.
        ValueError: If the YAML layout is invalid or has unknown keys.
        TypeError: If a setting has the wrong type.
    """
    if yaml_path is None:
        yaml_path = pathlib.Path.cwd() / DEFAULT_CONFIG_NAME
        if not yaml_path.exists():
            logger.debug("No %s found, using default settings", DEFAULT_CONFIG_NAME)
            return Settings()

    if not yaml_path.exists():
        msg = f"Configuration not found at {yaml_path}"
        raise FileNotFoundError(msg)

    with yaml_path.open() as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or not isinstance(data.get("matchcast"), dict):
        msg = "YAML file must contain a 'matchcast' mapping of settings"
        raise ValueError(msg)

    values = data["matchcast"]
    defaults = Settings()
    unknown = sorted(set(values) - {f.name for f in fields(Settings)})
    if unknown:
        msg = f"Unknown settings: {', '.join(unknown)}"
        raise ValueError(msg)

    for name, value in values.items():
        _check_type(name, value, type(getattr(defaults, name)))

    settings = Settings(**values)
    logger.debug("Loaded settings from %s", yaml_path)
    return settings
