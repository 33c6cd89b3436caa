"""database.py のユニットテスト（スキーマ・インデックス・保守処理）."""

import sqlite3
from pathlib import Path

import pytest

from booru_tag_engine.core.database import (
    REQUIRED_INDEXES,
    build_indexes,
    create_database,
    optimize_database,
)


@pytest.fixture
def created_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "engine.db"
    create_database(db_path)
    return db_path


def _query(db_path: Path, sql: str) -> list[tuple]:
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(sql).fetchall()
    finally:
        conn.close()


class TestCreateDatabase:
    def test_schema_tables(self, created_db: Path) -> None:
        """投稿・タグ・関係・件数キャッシュのテーブルが揃う."""
        tables = {r[0] for r in _query(created_db, "SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {
            "USERS",
            "POSTS",
            "TAGS",
            "POST_TAGS",
            "TAG_CATEGORIES",
            "TAG_ALIASES",
            "TAG_IMPLICATIONS",
            "WIKI_PAGES",
            "ARTISTS",
            "POOLS",
            "POOL_POSTS",
            "FAVORITES",
            "POST_VOTES",
            "COUNT_CACHE",
        } <= tables

    def test_creation_pragmas(self, created_db: Path) -> None:
        assert _query(created_db, "PRAGMA page_size;")[0][0] == 4096
        # INCREMENTAL = 2
        assert _query(created_db, "PRAGMA auto_vacuum;")[0][0] == 2
        assert _query(created_db, "PRAGMA journal_mode;")[0][0] == "wal"

    def test_existing_database_is_left_alone(self, created_db: Path) -> None:
        conn = sqlite3.connect(created_db)
        conn.execute("INSERT INTO TAGS (name) VALUES ('kept')")
        conn.commit()
        conn.close()

        create_database(created_db)

        assert _query(created_db, "SELECT name FROM TAGS") == [("kept",)]


class TestRelationshipConstraints:
    """エイリアスの一意制約と自己参照禁止."""

    def test_one_active_alias_per_antecedent(self, created_db: Path) -> None:
        conn = sqlite3.connect(created_db)
        try:
            conn.execute(
                "INSERT INTO TAG_ALIASES (antecedent_name, consequent_name, status) VALUES ('a', 'b', 'active')"
            )
            # 保留中・却下済みは何件あってもよい
            conn.execute(
                "INSERT INTO TAG_ALIASES (antecedent_name, consequent_name, status) VALUES ('a', 'c', 'pending')"
            )
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO TAG_ALIASES (antecedent_name, consequent_name, status) VALUES ('a', 'd', 'active')"
                )
        finally:
            conn.close()

    def test_self_alias_rejected(self, created_db: Path) -> None:
        conn = sqlite3.connect(created_db)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute("INSERT INTO TAG_ALIASES (antecedent_name, consequent_name) VALUES ('a', 'a')")
        finally:
            conn.close()


class TestMaintenance:
    def test_build_indexes_is_idempotent(self, created_db: Path) -> None:
        build_indexes(created_db)
        build_indexes(created_db)

        indexes = _query(created_db, "SELECT name FROM sqlite_master WHERE type = 'index' AND name LIKE 'idx%'")
        assert len(indexes) == len(REQUIRED_INDEXES)

    def test_optimize_keeps_data(self, created_db: Path) -> None:
        conn = sqlite3.connect(created_db)
        conn.execute("INSERT INTO TAGS (name) VALUES ('kitten')")
        conn.commit()
        conn.close()

        optimize_database(created_db)

        assert _query(created_db, "SELECT COUNT(*) FROM TAGS")[0][0] == 1

    @pytest.mark.parametrize("operation", [build_indexes, optimize_database])
    def test_missing_database(self, tmp_path: Path, operation) -> None:
        with pytest.raises(FileNotFoundError, match="Database does not exist"):
            operation(tmp_path / "missing.db")
