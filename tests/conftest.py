"""共通フィクスチャ（tmp_path 上の SQLite ストア）."""

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.store import TagStore

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[TagStore]:
    s = TagStore.open(db_path)
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def ctx() -> SearchContext:
    return SearchContext(now=FIXED_NOW)
