# tests/unit/test_config.py: Unit tests for run settings loading and validation.

from pathlib import Path

import pytest

from reposettings.config import Credentials, RunSettings, build_settings, load_settings
from reposettings.rules import DEFAULT_ACCESS_RULES
from reposettings.util.errors import ConfigError

@pytest.fixture
def mock_config_dir(tmp_path: Path, monkeypatch) -> Path:
    """Creates a mock XDG config directory; platformdirs adds 'reposettings' to it."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    config_dir = tmp_path / "reposettings"
    config_dir.mkdir()
    return config_dir

def test_load_default_settings_file(mock_config_dir: Path):
    """Tests that the settings file in the user config directory is read."""
    (mock_config_dir / "settings.yaml").write_text(
        "workspace: acme\nfilter:\n  - 'repo*'\napprovals: 3\n"
    )

    values = load_settings()

    assert values == {"workspace": "acme", "filter": ["repo*"], "approvals": 3}

def test_missing_default_file_is_not_an_error(mock_config_dir: Path):
    """Tests that running without any settings file yields no values."""
    assert load_settings() == {}

def test_missing_explicit_file_raises(tmp_path: Path):
    """Tests that an explicitly requested file must exist."""
    with pytest.raises(ConfigError, match="Settings file not found"):
        load_settings(tmp_path / "nope.yaml")

def test_invalid_yaml_raises(tmp_path: Path):
    """Tests that YAML syntax errors are reported as ConfigError."""
    path = tmp_path / "settings.yaml"
    path.write_text("workspace: [unclosed")
    with pytest.raises(ConfigError, match="Error parsing YAML"):
        load_settings(path)

def test_non_mapping_raises(tmp_path: Path):
    """Tests that a settings file must hold a mapping."""
    path = tmp_path / "settings.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_settings(path)

def test_default_values_are_applied():
    """Tests the defaults of a minimal run."""
    settings = build_settings({"workspace": "acme"}, {})

    assert settings.filter == ["*"]
    assert settings.projects == []
    assert settings.approvals == 2
    assert settings.success_builds == 1
    assert settings.access_rules == DEFAULT_ACCESS_RULES
    assert settings.webhook_hostname is None
    assert not settings.dry_run
    assert settings.log_level == "INFO"

def test_overrides_win_over_file_values():
    """Tests that set command-line values replace file values and unset ones don't."""
    settings = build_settings(
        {"workspace": "acme", "filter": ["repo*"], "approvals": 3, "debug": False},
        {"workspace": None, "filter": [], "approvals": 1, "debug": True},
    )

    assert settings.workspace == "acme"
    assert settings.filter == ["repo*"]
    assert settings.approvals == 1
    assert settings.log_level == "DEBUG"

def test_validation_error_raises_config_error():
    """Tests that invalid settings are reported as ConfigError."""
    with pytest.raises(ConfigError, match="Settings validation failed"):
        build_settings({}, {})
    with pytest.raises(ConfigError):
        build_settings({"workspace": "acme", "approvals": -1}, {})

def test_credentials_from_file_are_hidden():
    """Tests that credentials load from a mapping and the password is not shown."""
    settings = build_settings(
        {"workspace": "acme", "credentials": {"username": "bot", "password": "s3cr3t"}}, {}
    )
    assert settings.credentials == Credentials(username="bot", password="s3cr3t")
    assert "s3cr3t" not in repr(settings)

def test_settings_are_frozen():
    """Tests that settings cannot change once validated."""
    settings = RunSettings(workspace="acme")
    with pytest.raises(Exception):
        settings.workspace = "other"
