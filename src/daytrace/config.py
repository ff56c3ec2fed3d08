"""Central configuration for daytrace.

Every tunable threshold of the timeline builder and of ingestion lives here.
Core functions never read this module directly; they take a
:class:`~daytrace.timeline.settings.TimelineSettings` value, built from the
loaded configuration with ``TimelineSettings.from_config``.

Configuration priority (highest wins):
1. Environment variables (``DAYTRACE_*``, nested with ``__``)
2. Config file (YAML)
3. In-code defaults

Example:
    >>> from daytrace.config import get_config
    >>> cfg = get_config()
    >>> cfg.gap_filling.preference
    <GapFillPreference.BALANCED: 'balanced'>

Config File Format (YAML):
    ```yaml
    thresholds:
      min_evidence_block_minutes: 10
      screen_time_merge_gap: 15
      commute_max_gap: 90

    gap_filling:
      preference: balanced  # conservative | balanced | aggressive | manual
      confidence_threshold: 0.6
      pattern_min_confidence: 0.6
      allow_auto_suggestions: true

    ingestion:
      window_minutes: 30
      extension_gap_seconds: 60
      place_radius_m: 150
      timezone: Europe/Berlin

    paths:
      config_dir: ~/.daytrace

    debug: false
    verbose: false
    ```
"""

from __future__ import annotations

import functools
import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ConfigError(Exception):
    """Base exception for configuration errors."""

    pass


class ConfigFileError(ConfigError):
    """Exception raised when a config file cannot be used.

    Raised when:
    - An explicitly requested config file does not exist
    - A config file exists but cannot be read
    """

    pass


# =============================================================================
# Enums
# =============================================================================


class GapFillPreference(str, Enum):
    """How aggressively uncovered time is inferred.

    Attributes:
        CONSERVATIVE: Raise the pattern threshold by 0.1.
        BALANCED: Default behavior.
        AGGRESSIVE: Lower the pattern threshold by 0.1 and also infer
            productive usage, commutes and prep/wind-down blocks.
        MANUAL: Never infer anything; leave uncovered time unknown.
    """

    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    MANUAL = "manual"


# =============================================================================
# Configuration Models
# =============================================================================


class ThresholdsConfig(BaseModel):
    """Minute and confidence thresholds of the timeline builder.

    Attributes:
        min_evidence_block_minutes: Shortest evidence or location block kept.
        distraction_minutes: Phone use that counts as distraction or as
            staying up late.
        screen_time_merge_gap: Sessions closer than this merge into one block.
        sleep_merge_gap: Merge gap for sessions inside a sleep window.
        sleep_max_start_offset: Latest burst start (after planned bedtime)
            that still shifts the sleep start.
        sleep_min_remaining: Sleep left after a shift; shorter rejects it.
        planned_overlap_minutes: Overlap with a plan that drops a
            screen-time block.
        committed_overlap_minutes: Overlap with committed blocks that skips
            a planned event.
        dedup_overlap_minutes: Overlap tolerated between kept blocks.
        extension_min_minutes: Shortest location-backed overrun applied.
        commute_min_gap: Shortest commute.
        commute_max_gap: Longest commute.
        prep_min_gap: Shortest prep/wind-down block.
        prep_max_gap: Longest prep/wind-down block.
        fusion_distraction_minutes: Distraction needed for screen time to
            override the plan.
        pattern_override_confidence: Pattern confidence needed to override
            the plan.
    """

    min_evidence_block_minutes: int = Field(default=10, ge=1)
    distraction_minutes: int = Field(default=10, ge=0)
    screen_time_merge_gap: int = Field(default=15, ge=0)
    sleep_merge_gap: int = Field(default=5, ge=0)
    sleep_max_start_offset: int = Field(default=120, ge=0)
    sleep_min_remaining: int = Field(default=30, ge=0)
    planned_overlap_minutes: int = Field(default=5, ge=0)
    committed_overlap_minutes: int = Field(default=10, ge=0)
    dedup_overlap_minutes: int = Field(default=10, ge=0)
    extension_min_minutes: int = Field(default=10, ge=0)
    commute_min_gap: int = Field(default=15, ge=0)
    commute_max_gap: int = Field(default=90, ge=0)
    prep_min_gap: int = Field(default=10, ge=0)
    prep_max_gap: int = Field(default=45, ge=0)
    fusion_distraction_minutes: int = Field(default=20, ge=0)
    pattern_override_confidence: float = Field(default=0.8, ge=0, le=1)

    @model_validator(mode="after")
    def check_ranges(self) -> "ThresholdsConfig":
        """Reject inverted min/max pairs."""
        if self.commute_min_gap > self.commute_max_gap:
            raise ValueError("commute_min_gap must not exceed commute_max_gap")
        if self.prep_min_gap > self.prep_max_gap:
            raise ValueError("prep_min_gap must not exceed prep_max_gap")
        return self


class GapFillingConfig(BaseModel):
    """User preferences for gap inference."""

    preference: GapFillPreference = GapFillPreference.BALANCED
    confidence_threshold: float = Field(default=0.6, ge=0, le=1)
    pattern_min_confidence: float | None = Field(default=0.6, ge=0, le=1)
    allow_auto_suggestions: bool = True

    @field_validator("preference", mode="before")
    @classmethod
    def normalize_preference(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class IngestionConfig(BaseModel):
    """Incremental ingestion settings.

    Attributes:
        window_minutes: Ingestion window length; windows are aligned to
            multiples of this length from midnight.
        extension_gap_seconds: Largest gap an event may be extended across
            from the previous window.
        place_radius_m: Radius for user places without their own.
        place_match_ratio: Share of samples that must match a place.
        timezone: IANA name of the user's timezone; ``None`` means UTC.
    """

    window_minutes: int = Field(default=30, ge=1, le=24 * 60)
    extension_gap_seconds: int = Field(default=60, ge=0)
    place_radius_m: float = Field(default=150.0, gt=0)
    place_match_ratio: float = Field(default=0.7, gt=0, le=1)
    timezone: str | None = None


class PathsConfig(BaseModel):
    """Filesystem paths.

    Attributes:
        config_dir: Base directory. Default ``~/.daytrace``.
        log_dir: Log directory. Default ``config_dir/logs``.
    """

    config_dir: Path = Field(default_factory=lambda: Path.home() / ".daytrace")
    log_dir: Path | None = None

    @field_validator("config_dir", "log_dir", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Any:
        """Expand ~ in configured paths."""
        if isinstance(v, (str, Path)):
            return Path(v).expanduser()
        return v

    @model_validator(mode="after")
    def resolve_defaults(self) -> "PathsConfig":
        if self.log_dir is None:
            object.__setattr__(self, "log_dir", self.config_dir / "logs")
        return self

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.yaml"


class AppConfig(BaseSettings):
    """Top-level configuration.

    Attributes:
        thresholds: Timeline builder thresholds.
        gap_filling: Gap inference preferences.
        ingestion: Incremental ingestion settings.
        paths: Filesystem paths.
        debug: Enable debug logging.
        verbose: Enable verbose console output.

    Example:
        >>> config = AppConfig(gap_filling={"preference": "aggressive"})
        >>> config.gap_filling.preference.value
        'aggressive'
    """

    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    gap_filling: GapFillingConfig = Field(default_factory=GapFillingConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    debug: bool = Field(default=False, description="Enable debug mode.")
    verbose: bool = Field(default=False, description="Enable verbose output.")

    model_config = {
        "env_prefix": "DAYTRACE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Environment variables win over values read from the config file."""
        return env_settings, init_settings, file_secret_settings


# =============================================================================
# Loading
# =============================================================================

SECTIONS = {
    "thresholds": ThresholdsConfig,
    "gap_filling": GapFillingConfig,
    "ingestion": IngestionConfig,
    "paths": PathsConfig,
}


def default_search_paths(path: Path | None = None) -> list[Path]:
    """Config file locations, in lookup order."""
    candidates = [
        Path("./daytrace.yaml"),
        Path("./daytrace.yml"),
        Path.home() / ".daytrace" / "config.yaml",
        Path.home() / ".daytrace" / "config.yml",
    ]
    return ([path] if path is not None else []) + candidates


def find_config_file(path: Path | None = None) -> Path | None:
    """First existing config file, or ``None``.

    Raises:
        ConfigFileError: If ``path`` was given explicitly and does not exist.
    """
    if path is not None and not path.exists():
        raise ConfigFileError(f"Config file not found: {path}")
    for candidate in default_search_paths(path):
        if candidate.exists():
            return candidate
    return None


def _read_config_file(config_file: Path) -> dict[str, Any]:
    try:
        content = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"Cannot read config file {config_file}: {e}") from e

    if not content.strip():
        return {}
    try:
        loaded = yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse config file {config_file}: {e}. Using defaults.")
        return {}
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        logger.warning(f"Config file {config_file} has unexpected format. Using defaults.")
        return {}
    return loaded


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file, environment, and defaults.

    A missing config file is not an error. A malformed file, or a section
    with invalid values, logs a warning and falls back to defaults for
    that section.

    Args:
        path: Optional path to a config file. If None, searches default
            locations.

    Returns:
        Fully-populated AppConfig instance.

    Raises:
        ConfigFileError: If ``path`` does not exist or cannot be read.

    Example:
        >>> config = load_config(Path("./daytrace.yaml"))
    """
    config_file = find_config_file(path)
    config_data = _read_config_file(config_file) if config_file is not None else {}
    if config_file is not None:
        logger.debug(f"Loaded config file {config_file}")

    sections: dict[str, Any] = {}
    for name, model in SECTIONS.items():
        raw = config_data.get(name)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            logger.warning(f"Config section '{name}' must be a mapping. Using defaults.")
            continue
        try:
            # Plain dicts so environment overrides merge key by key.
            sections[name] = model(**raw).model_dump()
        except ValueError as e:
            logger.warning(f"Invalid values in config section '{name}': {e}. Using defaults.")

    for flag in ("debug", "verbose"):
        if flag in config_data:
            sections[flag] = bool(config_data[flag])

    return AppConfig(**sections)


@functools.lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the cached configuration singleton.

    Returns:
        Cached AppConfig instance.
    """
    return load_config()


def reset_config() -> None:
    """Clear the configuration cache (used by tests)."""
    get_config.cache_clear()
