# src/reposettings/config.py: Pydantic models for run settings.
# This module defines the settings of a run: the workspace and repository
# filters, the rule documents, the branch restriction defaults, the run mode
# switches and the credentials. Values come from an optional YAML settings
# file and are overridden by command-line options. Settings are immutable once
# validated.

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .rules import DEFAULT_ACCESS_RULES, DEFAULT_BRANCH_RULES
from .util.errors import ConfigError
from .util.paths import expand_path, get_default_settings_path

# --- Pydantic Models for Settings Schema ---

class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)
    oauth2: bool = False

class RunSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    workspace: str
    filter: List[str] = Field(default_factory=lambda: ["*"])
    projects: List[str] = Field(default_factory=list)
    only_branches: bool = False
    debug: bool = False
    dry_run: bool = False
    json_logs: bool = False
    webhook_hostname: Optional[str] = None
    access_rules: str = DEFAULT_ACCESS_RULES
    branch_rules: str = DEFAULT_BRANCH_RULES
    success_builds: int = Field(default=1, ge=0)
    approvals: int = Field(default=2, ge=0)
    credentials: Optional[Credentials] = None

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.debug else "INFO"


# --- Settings Loading ---

def load_settings(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """
    Reads the YAML settings file.

    Without an explicit path the file in the user config directory is used
    when present; its absence is not an error.
    """
    explicit = path is not None
    settings_path = expand_path(path) if explicit else get_default_settings_path()
    if not settings_path.is_file():
        if explicit:
            raise ConfigError(f"Settings file not found: '{settings_path}'.")
        return {}

    try:
        with open(settings_path, "r") as f:
            raw_settings = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML settings: {e}")

    if raw_settings is None:
        return {}
    if not isinstance(raw_settings, dict):
        raise ConfigError(f"Settings file '{settings_path}' must contain a mapping.")
    return raw_settings

def build_settings(
    file_values: Mapping[str, Any], overrides: Mapping[str, Any]
) -> RunSettings:
    """Validates file values with the non-empty command-line overrides applied."""
    merged = dict(file_values)
    merged.update({k: v for k, v in overrides.items() if v is not None and v != []})
    try:
        return RunSettings.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Settings validation failed: {e}")
