"""Test fixtures: a temporary project and helpers to populate it."""

from __future__ import annotations

from pathlib import Path

import pytest
import structlog

from pluqqy.core.composer import CompositionEngine
from pluqqy.core.registry import TagRegistry
from pluqqy.core.renamer import RenameEngine
from pluqqy.core.search import SearchEngine
from pluqqy.db.store import ProjectStore


@pytest.fixture(autouse=True)
def _reset_logging():
    """CLI tests configure structlog against CliRunner streams; undo that after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    """Fresh, initialized project for each test."""
    project = ProjectStore(tmp_path / ".pluqqy")
    project.init_project()
    return project


@pytest.fixture
def registry(store: ProjectStore) -> TagRegistry:
    return TagRegistry(store)


@pytest.fixture
def composer(store: ProjectStore) -> CompositionEngine:
    return CompositionEngine(store)


@pytest.fixture
def renamer(store: ProjectStore) -> RenameEngine:
    return RenameEngine(store)


@pytest.fixture
def search(store: ProjectStore) -> SearchEngine:
    return SearchEngine(store)
