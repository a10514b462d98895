"""
Ingestion Settings - YAML-backed pipeline configuration.

Loaded lazily from backend/config/ingestion.yaml (override with
INGESTION_CONFIG_PATH). A missing file falls back to built-in defaults so
local runs and tests work without one; a malformed file is a
ConfigurationError.
"""
import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ingestion.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "pacing": {
        "default_profile": "standard",
        "cancel_check_interval_seconds": 1.0,
        "item_retries": 1,
        "profiles": {
            "standard": {"min_seconds": 20, "max_seconds": 60},
            "high_risk": {"min_seconds": 60, "max_seconds": 120},
            "zone": {"min_seconds": 90, "max_seconds": 180},
        },
    },
    "rate_limits": {
        "defaults": {
            "requests_per_minute": 6,
            "requests_per_hour": 120,
            "burst_limit": 2,
        },
        "domains": {},
    },
    "navigator": {
        "headless": False,
        "slow_mo_ms": 500,
        "viewport": {"width": 1920, "height": 1080},
        "locale_header": "fr-CA,fr;q=0.9,en-CA;q=0.8",
        "challenge_wait_ms": 30000,
        "step_timeouts_ms": {
            "launch": 30000,
            "navigate_search": 30000,
            "submit_search": 15000,
            "select_result": 15000,
            "navigate_detail": 30000,
            "extract": 15000,
        },
        "validation_settle_ms": 1000,
    },
    "bulk_load": {
        "chunk_size": 1000,
        "max_attempts": 3,
        "initial_backoff_seconds": 1.0,
        "backoff_multiplier": 2.0,
        "failure_sample_limit": 100,
    },
}


@dataclass(frozen=True)
class PacingProfile:
    """Uniform inter-item delay window in seconds."""
    name: str
    min_seconds: float
    max_seconds: float

    def __post_init__(self):
        if self.min_seconds < 0 or self.max_seconds < self.min_seconds:
            raise ConfigurationError(
                f"Invalid pacing window for {self.name}: "
                f"{self.min_seconds}-{self.max_seconds}s"
            )


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _default_config_path() -> str:
    return os.getenv(
        "INGESTION_CONFIG_PATH",
        str(Path(__file__).parent.parent / "config" / "ingestion.yaml"),
    )


class IngestionSettings:
    """Accessors over the merged YAML + default configuration."""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict] = None):
        self.config_path = config_path or _default_config_path()
        self._overrides = overrides or {}
        self._config = None

    @property
    def config(self) -> Dict[str, Any]:
        """Load config (cached)."""
        if self._config is None:
            self._config = _deep_merge(self._load_config(), self._overrides)
        return self._config

    def _load_config(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
                logger.info(f"Loaded ingestion settings from {self.config_path}")
        except FileNotFoundError:
            logger.warning(
                f"Ingestion config not found at {self.config_path}, using defaults"
            )
            return copy.deepcopy(DEFAULT_SETTINGS)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed ingestion config {self.config_path}: {e}")

        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Ingestion config {self.config_path} must be a mapping"
            )
        return _deep_merge(DEFAULT_SETTINGS, loaded)

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def pacing_profile(self, name: Optional[str] = None) -> PacingProfile:
        pacing = self.config["pacing"]
        name = name or pacing["default_profile"]
        profile = pacing["profiles"].get(name)
        if profile is None:
            raise ConfigurationError(f"Unknown pacing profile: {name}")
        return PacingProfile(
            name=name,
            min_seconds=float(profile["min_seconds"]),
            max_seconds=float(profile["max_seconds"]),
        )

    @property
    def cancel_check_interval(self) -> float:
        return float(self.config["pacing"]["cancel_check_interval_seconds"])

    @property
    def item_retries(self) -> int:
        return int(self.config["pacing"]["item_retries"])

    @property
    def rate_limits(self) -> Dict[str, Any]:
        return self.config["rate_limits"]

    @property
    def navigator(self) -> Dict[str, Any]:
        return self.config["navigator"]

    def step_timeout_ms(self, step: str) -> int:
        return int(self.navigator["step_timeouts_ms"].get(step, 30000))

    @property
    def bulk_load(self) -> Dict[str, Any]:
        return self.config["bulk_load"]


_settings = None


def get_settings() -> IngestionSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = IngestionSettings()
    return _settings


def reset_settings():
    """Drop the cached settings (tests, config reloads)."""
    global _settings
    _settings = None
