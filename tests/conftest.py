# tests/conftest.py: Shared fixtures for the reposettings test suite.

from pathlib import Path

import pytest

from reposettings.rules import RulesReader

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Directory holding the JSON rule documents used by the tests."""
    return FIXTURES


@pytest.fixture
def rules_reader():
    """Builds a RulesReader over fixture documents."""
    def factory(
        access: str = "test-repository-permissions.json",
        branch: str = "test-branch-permissions.json",
    ) -> RulesReader:
        return RulesReader(str(FIXTURES / access), str(FIXTURES / branch))
    return factory
