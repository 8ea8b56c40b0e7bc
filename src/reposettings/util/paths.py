# src/reposettings/util/paths.py: XDG-compliant path resolution.
# This module resolves the per-user configuration directory where an optional
# settings file can live, and expands user supplied paths.

import os
from pathlib import Path
import platformdirs

APP_NAME = "reposettings"
SETTINGS_FILE = "settings.yaml"

def get_xdg_config_home() -> Path:
    """Get the XDG_CONFIG_HOME path for the application."""
    return Path(platformdirs.user_config_dir(APP_NAME))

def get_default_settings_path() -> Path:
    """Location of the settings file used when none is given explicitly."""
    return get_xdg_config_home() / SETTINGS_FILE

def expand_path(path: str | Path) -> Path:
    """Expand environment variables and user home directory in a path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path)))).resolve()
