"""Configuration models for Shears.

PrunerConfig holds every knob the engine reads: enabled strategies,
protected tools and paths, directed-tool settings, pinning mode and
preemptive compaction thresholds.  Models forbid unknown keys so a
misspelled setting fails loudly instead of being ignored.

load_config() merges JSON config files from the global, env-selected
and project locations, in that order.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from shears.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PROTECTED_TOOLS: tuple[str, ...] = (
    "task", "todowrite", "todoread", "discard", "extract", "pin", "batch",
)

CONFIG_FILENAME = "shears.json"

_STRICT = {"extra": "forbid"}


class DeduplicationConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = True
    protected_tools: list[str] = Field(default_factory=list)


class SupersedeWritesConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = True
    write_tools: list[str] = Field(default_factory=lambda: ["write", "edit", "multiedit", "patch"])
    read_tools: list[str] = Field(default_factory=lambda: ["read"])


class PurgeErrorsConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = True
    turns: int = Field(default=4, ge=1)


class StrategiesConfig(BaseModel):
    model_config = _STRICT

    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    supersede_writes: SupersedeWritesConfig = Field(default_factory=SupersedeWritesConfig)
    purge_errors: PurgeErrorsConfig = Field(default_factory=PurgeErrorsConfig)


class ToggleConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = True


class NudgeConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = True
    frequency: int = Field(default=10, ge=1)


class PinningModeConfig(BaseModel):
    """Pinning mode: everything unpinned is discarded every N turns."""

    model_config = _STRICT

    enabled: bool = False
    prune_frequency: int = Field(default=10, ge=1)
    warning_turns: int = Field(default=2, ge=0)
    default_pin_turns: int = Field(default=10, ge=1)


class DirectedToolsConfig(BaseModel):
    model_config = _STRICT

    discard: ToggleConfig = Field(default_factory=ToggleConfig)
    extract: ToggleConfig = Field(default_factory=ToggleConfig)
    pin: ToggleConfig = Field(default_factory=lambda: ToggleConfig(enabled=False))
    nudge: NudgeConfig = Field(default_factory=NudgeConfig)
    pinning_mode: PinningModeConfig = Field(default_factory=PinningModeConfig)

    @property
    def any_enabled(self) -> bool:
        return self.discard.enabled or self.extract.enabled or self.pin.enabled


class TurnProtectionConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = False
    turns: int = Field(default=4, ge=1)


class TruncationConfig(BaseModel):
    model_config = _STRICT

    enabled: bool = True
    protected_messages: int = Field(default=3, ge=0)


class CompactionConfig(BaseModel):
    """Preemptive compaction thresholds."""

    model_config = _STRICT

    enabled: bool = False
    threshold: float = Field(default=0.85, gt=0.0, le=1.0)
    cooldown_seconds: float = Field(default=60.0, ge=0.0)
    min_tokens: int = Field(default=50_000, ge=0)
    truncation: TruncationConfig = Field(default_factory=TruncationConfig)


class StrategyToggleOverride(BaseModel):
    model_config = _STRICT

    enabled: Optional[bool] = None


class ProviderStrategyOverrides(BaseModel):
    model_config = _STRICT

    deduplication: Optional[StrategyToggleOverride] = None
    supersede_writes: Optional[StrategyToggleOverride] = None
    purge_errors: Optional[StrategyToggleOverride] = None


class ProviderOverride(BaseModel):
    model_config = _STRICT

    enabled: Optional[bool] = None
    strategies: Optional[ProviderStrategyOverrides] = None


class OverridesConfig(BaseModel):
    model_config = _STRICT

    provider: dict[str, ProviderOverride] = Field(default_factory=dict)


class PrunerConfig(BaseModel):
    """Top-level engine configuration."""

    model_config = _STRICT

    enabled: bool = True
    debug: bool = False
    pruning_summary: Literal["off", "minimal", "detailed"] = "detailed"
    protected_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_TOOLS))
    protected_file_patterns: list[str] = Field(default_factory=list)
    strategies: StrategiesConfig = Field(default_factory=StrategiesConfig)
    tools: DirectedToolsConfig = Field(default_factory=DirectedToolsConfig)
    turn_protection: TurnProtectionConfig = Field(default_factory=TurnProtectionConfig)
    cache_max_entries: int = Field(default=500, ge=1)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    assistant_injection_providers: list[str] = Field(
        default_factory=lambda: ["github-copilot", "github-copilot-enterprise"]
    )
    overrides: OverridesConfig = Field(default_factory=OverridesConfig)

    @field_validator("protected_tools", "assistant_injection_providers")
    @classmethod
    def _strip_names(cls, v: list[str]) -> list[str]:
        return [name.strip() for name in v if name.strip()]

    def for_provider(self, provider_id: str | None) -> PrunerConfig:
        """Return the effective config for a provider, applying overrides.

        Unknown providers (or None) get this config unchanged.
        """
        if not provider_id:
            return self
        override = self.overrides.provider.get(provider_id)
        if override is None:
            return self
        effective = self.model_copy(deep=True)
        if override.enabled is not None:
            effective.enabled = override.enabled
        if override.strategies is not None:
            for name in ("deduplication", "supersede_writes", "purge_errors"):
                toggle = getattr(override.strategies, name)
                if toggle is not None and toggle.enabled is not None:
                    getattr(effective.strategies, name).enabled = toggle.enabled
        return effective

    @classmethod
    def from_dict(cls, d: dict | None) -> PrunerConfig:
        """Validate a config dict, raising ConfigError on failure."""
        try:
            return cls.model_validate(d or {})
        except ValidationError as exc:
            raise ConfigError(
                f"Invalid shears config: {exc.error_count()} error(s)",
                errors=exc.errors(),
            ) from exc


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------


def _deep_merge(base: dict, overlay: dict) -> dict:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _find_project_config(start: Path) -> Path | None:
    current = start.resolve()
    while True:
        candidate = current / ".shears" / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        current = current.parent


def config_paths(directory: str | os.PathLike | None = None) -> list[Path]:
    """Return existing config files in merge order (lowest priority first)."""
    paths: list[Path] = []
    global_path = Path.home() / ".config" / "shears" / CONFIG_FILENAME
    if global_path.is_file():
        paths.append(global_path)
    env_dir = os.environ.get("SHEARS_CONFIG_DIR")
    if env_dir:
        env_path = Path(env_dir) / CONFIG_FILENAME
        if env_path.is_file():
            paths.append(env_path)
    if directory is not None:
        project = _find_project_config(Path(directory))
        if project is not None and project not in paths:
            paths.append(project)
    return paths


def load_config(
    directory: str | os.PathLike | None = None,
    *,
    paths: list[Path] | None = None,
) -> PrunerConfig:
    """Load and merge config files into a validated PrunerConfig.

    Args:
        directory: Project directory to search upward for ``.shears/shears.json``.
        paths: Explicit files to merge instead of the default search.

    Raises:
        ConfigError: If a file is not valid JSON or the merged dict fails
            validation.
    """
    merged: dict = {}
    for path in paths if paths is not None else config_paths(directory):
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read config {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a JSON object")
        logger.debug("Loaded config layer %s", path)
        merged = _deep_merge(merged, data)
    return PrunerConfig.from_dict(merged)
