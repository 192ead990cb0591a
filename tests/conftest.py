"""Shared pytest fixtures."""

from pathlib import Path

import pytest

from lpmail.storage.db import EmailStore

ORG_ID = "org_1"


@pytest.fixture
def store(tmp_path: Path) -> EmailStore:
    """A fresh EmailStore backed by a temporary SQLite file."""
    s = EmailStore(db_path=tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def org_id() -> str:
    return ORG_ID
