"""SQLiteデータベース作成・最適化ユーティリティ.

投稿/タグ/エイリアス/インプリケーションを保持する SQLite の作成、インデックス作成、
最適化（VACUUM/ANALYZE）を提供します。

注意:
    PRAGMA のうち、cache_size / temp_store / mmap_size / foreign_keys などは接続単位の設定です。
    DBファイルへ恒久的に「書き込まれる設定」ではない点に注意してください。
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

# PRAGMA は「DBファイルに永続化されるもの」と「接続ごとの一時設定」が混在するため、
# 意図が伝わるように分類して定義する。
PERSISTENT_PRAGMAS = [
    "PRAGMA journal_mode = WAL;",  # 読み取り並行性
]
CONNECTION_PRAGMAS = [
    "PRAGMA foreign_keys = ON;",
    "PRAGMA synchronous = NORMAL;",
    "PRAGMA cache_size = -64000;",  # 64MB cache
    "PRAGMA temp_store = MEMORY;",
    "PRAGMA busy_timeout = 5000;",  # 競合するバッチは待機してから失敗させる
]

DISTRIBUTION_PRAGMAS = [*PERSISTENT_PRAGMAS, *CONNECTION_PRAGMAS]


def apply_connection_pragmas(conn: sqlite3.Connection) -> None:
    """接続ごとに適用が必要な PRAGMA を設定する。"""
    for pragma in CONNECTION_PRAGMAS:
        conn.execute(pragma)


# 必須インデックス（想定クエリに基づく）
REQUIRED_INDEXES = [
    # POST_TAGS: タグ→投稿の集合参照
    "CREATE INDEX IF NOT EXISTS idx_post_tags_tag ON POST_TAGS(tag_id, post_id);",
    # POSTS: 範囲検索・並び替え
    "CREATE INDEX IF NOT EXISTS idx_posts_created_at ON POSTS(created_at);",
    "CREATE INDEX IF NOT EXISTS idx_posts_score ON POSTS(score);",
    "CREATE INDEX IF NOT EXISTS idx_posts_parent ON POSTS(parent_id);",
    "CREATE INDEX IF NOT EXISTS idx_posts_uploader ON POSTS(uploader_id);",
    # TAG_ALIASES / TAG_IMPLICATIONS: 名前とステータスでの参照
    "CREATE INDEX IF NOT EXISTS idx_tag_aliases_consequent ON TAG_ALIASES(consequent_name, status);",
    "CREATE INDEX IF NOT EXISTS idx_tag_implications_antecedent ON TAG_IMPLICATIONS(antecedent_name, status);",
    "CREATE INDEX IF NOT EXISTS idx_tag_implications_consequent ON TAG_IMPLICATIONS(consequent_name, status);",
    # FAVORITES / POOL_POSTS / POST_VOTES: 関連メタタグ
    "CREATE INDEX IF NOT EXISTS idx_favorites_post ON FAVORITES(post_id);",
    "CREATE INDEX IF NOT EXISTS idx_pool_posts_post ON POOL_POSTS(post_id);",
    "CREATE INDEX IF NOT EXISTS idx_post_votes_post ON POST_VOTES(post_id);",
]

# DBスキーマ
SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS USERS (
        user_id INTEGER NOT NULL PRIMARY KEY,
        name TEXT NOT NULL COLLATE NOCASE,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        UNIQUE(name)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS TAG_CATEGORIES (
        code INTEGER NOT NULL PRIMARY KEY,
        name TEXT NOT NULL,
        short_name TEXT NOT NULL,
        UNIQUE(name)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS TAGS (
        tag_id INTEGER NOT NULL PRIMARY KEY,
        name TEXT NOT NULL,
        category INTEGER NOT NULL DEFAULT 0,
        post_count INTEGER NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        UNIQUE(name)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS POSTS (
        post_id INTEGER NOT NULL PRIMARY KEY,
        md5 TEXT,
        rating TEXT NOT NULL DEFAULT 'q',
        source TEXT NOT NULL DEFAULT '',
        file_ext TEXT NOT NULL DEFAULT 'jpg',
        file_size INTEGER NOT NULL DEFAULT 0,
        image_width INTEGER NOT NULL DEFAULT 0,
        image_height INTEGER NOT NULL DEFAULT 0,
        score INTEGER NOT NULL DEFAULT 0,
        fav_count INTEGER NOT NULL DEFAULT 0,
        parent_id INTEGER NULL,
        uploader_id INTEGER NULL,
        approver_id INTEGER NULL,
        is_pending BOOLEAN NOT NULL DEFAULT 0,
        is_flagged BOOLEAN NOT NULL DEFAULT 0,
        is_deleted BOOLEAN NOT NULL DEFAULT 0,
        is_banned BOOLEAN NOT NULL DEFAULT 0,
        is_rating_locked BOOLEAN NOT NULL DEFAULT 0,
        is_note_locked BOOLEAN NOT NULL DEFAULT 0,
        is_status_locked BOOLEAN NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        FOREIGN KEY(parent_id) REFERENCES POSTS(post_id),
        FOREIGN KEY(uploader_id) REFERENCES USERS(user_id),
        FOREIGN KEY(approver_id) REFERENCES USERS(user_id),
        CONSTRAINT ck_rating CHECK (rating IN ('s', 'q', 'e'))
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS POST_TAGS (
        post_id INTEGER NOT NULL,
        tag_id INTEGER NOT NULL,
        PRIMARY KEY (post_id, tag_id),
        FOREIGN KEY(post_id) REFERENCES POSTS(post_id),
        FOREIGN KEY(tag_id) REFERENCES TAGS(tag_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS TAG_ALIASES (
        alias_id INTEGER NOT NULL PRIMARY KEY,
        antecedent_name TEXT NOT NULL,
        consequent_name TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        forum_topic_id INTEGER NULL,
        creator_id INTEGER NULL,
        approver_id INTEGER NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        CONSTRAINT ck_alias_status CHECK (status IN ('pending', 'active', 'rejected')),
        CONSTRAINT ck_alias_not_self CHECK (antecedent_name != consequent_name)
    );
    """,
    # 有効なエイリアスは antecedent ごとに高々1件
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_tag_aliases_active_antecedent
        ON TAG_ALIASES(antecedent_name) WHERE status = 'active';
    """,
    """
    CREATE TABLE IF NOT EXISTS TAG_IMPLICATIONS (
        implication_id INTEGER NOT NULL PRIMARY KEY,
        antecedent_name TEXT NOT NULL,
        consequent_name TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        forum_topic_id INTEGER NULL,
        creator_id INTEGER NULL,
        approver_id INTEGER NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        CONSTRAINT ck_implication_status CHECK (status IN ('pending', 'active', 'rejected')),
        CONSTRAINT ck_implication_not_self CHECK (antecedent_name != consequent_name)
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_tag_implications_active_pair
        ON TAG_IMPLICATIONS(antecedent_name, consequent_name) WHERE status = 'active';
    """,
    """
    CREATE TABLE IF NOT EXISTS WIKI_PAGES (
        wiki_page_id INTEGER NOT NULL PRIMARY KEY,
        title TEXT NOT NULL,
        body TEXT NOT NULL DEFAULT '',
        is_deleted BOOLEAN NOT NULL DEFAULT 0,
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        UNIQUE(title)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ARTISTS (
        artist_id INTEGER NOT NULL PRIMARY KEY,
        name TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        UNIQUE(name)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS POOLS (
        pool_id INTEGER NOT NULL PRIMARY KEY,
        name TEXT NOT NULL COLLATE NOCASE,
        category TEXT NOT NULL DEFAULT 'series',
        is_deleted BOOLEAN NOT NULL DEFAULT 0,
        UNIQUE(name),
        CONSTRAINT ck_pool_category CHECK (category IN ('series', 'collection'))
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS POOL_POSTS (
        pool_id INTEGER NOT NULL,
        post_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        PRIMARY KEY (pool_id, position),
        FOREIGN KEY(pool_id) REFERENCES POOLS(pool_id),
        FOREIGN KEY(post_id) REFERENCES POSTS(post_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS FAVORITES (
        favorite_id INTEGER NOT NULL PRIMARY KEY,
        user_id INTEGER NOT NULL,
        post_id INTEGER NOT NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        FOREIGN KEY(user_id) REFERENCES USERS(user_id),
        FOREIGN KEY(post_id) REFERENCES POSTS(post_id),
        UNIQUE(user_id, post_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS POST_VOTES (
        post_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        score INTEGER NOT NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        PRIMARY KEY (post_id, user_id),
        FOREIGN KEY(post_id) REFERENCES POSTS(post_id),
        FOREIGN KEY(user_id) REFERENCES USERS(user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS COUNT_CACHE (
        cache_key TEXT NOT NULL PRIMARY KEY,
        count INTEGER NOT NULL,
        expires_at REAL NOT NULL
    );
    """,
]


def create_schema(conn: sqlite3.Connection) -> None:
    """DBスキーマ（テーブル）を作成する（既存テーブルはそのまま）."""
    for stmt in SCHEMA_SQL:
        conn.executescript(stmt)


@contextmanager
def maintenance_connection(db_path: Path, action: str) -> Iterator[sqlite3.Connection]:
    """保守作業用の接続. 失敗はログに残して再送出し、成功時のみ commit する."""
    conn = sqlite3.connect(db_path)
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        logger.error(f"Failed to {action}: {db_path}: {e}")
        raise
    finally:
        conn.close()


def require_existing_db(db_path: Path | str) -> Path:
    db_path = Path(db_path)
    if not db_path.exists():
        raise FileNotFoundError(f"Database does not exist: {db_path}")
    return db_path


def create_database(db_path: Path | str) -> None:
    """スキーマ付きのDBファイルを新規作成する. 既に存在する場合は何もしない.

    page_size と auto_vacuum はテーブル作成前にしか効かないため、ここで設定する。
    """
    db_path = Path(db_path)
    if db_path.exists():
        logger.warning(f"Database already exists: {db_path}")
        return

    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Creating tag engine database: {db_path}")
    with maintenance_connection(db_path, "create database") as conn:
        for pragma in ("PRAGMA page_size = 4096;", "PRAGMA auto_vacuum = INCREMENTAL;", *DISTRIBUTION_PRAGMAS):
            conn.execute(pragma)
            logger.debug(f"Applied: {pragma}")
        create_schema(conn)
    logger.info(f"Created {len(SCHEMA_SQL)} schema objects")


def build_indexes(db_path: Path | str) -> None:
    """検索・関係参照用のインデックスを作成する（冪等）.

    Raises:
        FileNotFoundError: DBファイルが存在しない場合
    """
    db_path = require_existing_db(db_path)
    with maintenance_connection(db_path, "build indexes") as conn:
        for index_sql in REQUIRED_INDEXES:
            conn.execute(index_sql)
    logger.info(f"Ensured {len(REQUIRED_INDEXES)} indexes: {db_path}")


def optimize_database(db_path: Path | str) -> None:
    """大量取り込みの後に VACUUM → ANALYZE を実行する.

    Raises:
        FileNotFoundError: DBファイルが存在しない場合
    """
    db_path = require_existing_db(db_path)
    with maintenance_connection(db_path, "optimize database") as conn:
        conn.execute("VACUUM;")
        conn.execute("ANALYZE;")
    logger.info(f"Optimized database: {db_path}")
