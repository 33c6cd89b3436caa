"""マスタデータ初期化.

設定されたタグカテゴリを TAG_CATEGORIES に投入します。
"""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from .categories import DEFAULT_CATEGORIES, TagCategories
from .database import maintenance_connection, require_existing_db


def initialize_master_data(db_path: Path | str, categories: TagCategories = DEFAULT_CATEGORIES) -> None:
    """TAG_CATEGORIES を初期化する.

    INSERT OR IGNORE のため何度実行してもよい（既存コードの名前は上書きしない）。

    Raises:
        FileNotFoundError: DBファイルが存在しない場合
    """
    db_path = require_existing_db(db_path)
    rows = [(c.code, c.name, c.short_name) for c in categories]
    with maintenance_connection(db_path, "initialize master data") as conn:
        conn.executemany("INSERT OR IGNORE INTO TAG_CATEGORIES (code, name, short_name) VALUES (?, ?, ?)", rows)
    logger.info(f"Seeded {len(rows)} tag categories: {db_path}")
