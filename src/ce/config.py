"""Settings for evidence retrieval, loaded from YAML."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

import yaml
from pydantic import Field, ValidationError, model_validator

from .schema import RecordModel, RerankerWeights, StrategyOverride, TaskIntent

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "evidence.yaml"
CONFIG_SECTION = "evidence"


class SettingsError(ValueError):
    """Raised when retrieval settings cannot be parsed or validated."""


class SearchSettings(RecordModel):
    include_patterns: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ("node_modules", ".git/", "dist/", "build/")
    max_results_per_signal: int = Field(default=10, ge=1)
    context_lines: int = Field(default=3, ge=0)


class LspSettings(RecordModel):
    definition_timeout: float = Field(default=5.0, gt=0)
    reference_timeout: float = Field(default=10.0, gt=0)


class RetrievalSettings(RecordModel):
    """Budget, timeout and weighting defaults used by the orchestrator."""

    token_budget: int = Field(default=8000, ge=0)
    provider_timeout: float = Field(default=5.0, gt=0)
    overall_timeout: float = Field(default=15.0, gt=0)
    max_concurrency: int = Field(default=3, ge=1)
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    weights: RerankerWeights = Field(default_factory=RerankerWeights)
    strategies: Dict[TaskIntent, StrategyOverride] = Field(default_factory=dict)
    search: SearchSettings = Field(default_factory=SearchSettings)
    lsp: LspSettings = Field(default_factory=LspSettings)

    @model_validator(mode="after")
    def _check_timeouts(self) -> "RetrievalSettings":
        if self.provider_timeout > self.overall_timeout:
            raise ValueError("provider_timeout must not exceed overall_timeout")
        return self


def settings_from_mapping(data: Mapping[str, Any]) -> RetrievalSettings:
    """Validate ``data`` (the ``evidence:`` section or a bare mapping)."""
    section = data.get(CONFIG_SECTION, data) if isinstance(data, Mapping) else data
    if section is None:
        section = {}
    if not isinstance(section, Mapping):
        raise SettingsError("Evidence settings must be a mapping.")
    try:
        return RetrievalSettings.model_validate(dict(section))
    except ValidationError as error:
        raise SettingsError(f"Evidence settings did not validate: {error}") from error


def load_settings(path: Path | str | None = None) -> RetrievalSettings:
    """Load settings from ``path``; a missing file yields the defaults."""
    config_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_NAME)
    if not config_path.exists():
        LOGGER.debug("No settings file at %s; using defaults.", config_path)
        return RetrievalSettings()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise SettingsError(f"Failed to parse settings: {error}") from error

    if not isinstance(data, dict):
        raise SettingsError("Configuration must be a mapping at the top level.")
    return settings_from_mapping(data)


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "LspSettings",
    "RetrievalSettings",
    "SearchSettings",
    "SettingsError",
    "load_settings",
    "settings_from_mapping",
]
