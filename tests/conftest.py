"""
Shared pytest fixtures and configuration for fireway tests.

This module provides:
- Automatic unit/integration markers based on test location
- structlog reset between tests
- An in-memory Firestore client and matching ``Collaborators``
- A helper for writing migration files into a temporary directory

Usage:
    async def test_something(migrations_dir, write_migration, collaborators):
        write_migration("v1__init.py", "async def migrate(ctx): ...")
        stats = await migrate(migrations_dir, collaborators=collaborators)
"""

import sys
import textwrap
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog

# Ensure fireway package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fireway.clients import Collaborators
from fireway.settings import FirewaySettings
from tests._support.fake_firestore import FakeAsyncClient


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = item.path.relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo any ``configure_logging`` call a test made."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Firestore Fixtures
# =============================================================================


@pytest.fixture
def fake_client() -> FakeAsyncClient:
    return FakeAsyncClient()


@pytest.fixture
def collaborators(fake_client: FakeAsyncClient) -> Collaborators:
    """Pre-built clients backed by the in-memory Firestore."""
    return Collaborators(firestore=fake_client, search=object(), secrets=object(), auth=object())


@pytest.fixture
def settings() -> FirewaySettings:
    return FirewaySettings(grace_period=0.01, emulator_host=None)


# =============================================================================
# Migration File Fixtures
# =============================================================================


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    d = tmp_path / "migrations"
    d.mkdir()
    return d


@pytest.fixture
def write_migration(migrations_dir: Path) -> Callable[[str, str], Path]:
    """Write a migration file; the body is dedented."""

    def _write(filename: str, body: str = "async def migrate(ctx):\n    pass\n") -> Path:
        path = migrations_dir / filename
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return path

    return _write
