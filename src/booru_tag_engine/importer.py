"""投稿フィクスチャの取り込み.

アダプタが読み込んだ DataFrame を投稿としてストアに登録します。
tag_string 中の `artist:name` / `char:name` のようなカテゴリ接頭辞はタグのカテゴリとして扱います。
"""

from __future__ import annotations

from pathlib import Path

import polars as pl
from loguru import logger

from booru_tag_engine.adapters import CSV_Adapter, JSON_Adapter
from booru_tag_engine.adapters.base_adapter import BaseAdapter
from booru_tag_engine.core.categories import TagCategories
from booru_tag_engine.core.normalize import normalize_tag_name
from booru_tag_engine.core.store import TagStore

_POST_COLUMNS = (
    "rating",
    "source",
    "md5",
    "file_ext",
    "file_size",
    "image_width",
    "image_height",
    "score",
    "parent_id",
    "is_pending",
    "is_flagged",
    "is_deleted",
    "is_banned",
)


def adapter_for(path: Path | str) -> BaseAdapter:
    """拡張子からアダプタを選ぶ（.csv / .json）."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return CSV_Adapter(path)
    if suffix == ".json":
        return JSON_Adapter(path)
    raise ValueError(f"Unsupported fixture format: {path}")


def split_category_prefix(token: str, categories: TagCategories) -> tuple[str, int | None]:
    """`artist:wokada` → ("wokada", 1). 接頭辞がカテゴリでなければ (token, None)."""
    prefix, sep, name = token.partition(":")
    if sep and name:
        category = categories.find(prefix)
        if category is not None:
            return normalize_tag_name(name), category.code
    return normalize_tag_name(token), None


def _prepare_tags(store: TagStore, tag_string: str) -> list[str]:
    names: list[str] = []
    for token in tag_string.split():
        name, code = split_category_prefix(token, store.categories)
        if not name:
            continue
        if code is not None:
            tag = store.find_or_create_tag(name, code)
            if tag.category != code:
                store.set_tag_category(tag.tag_id, code)
        names.append(name)
    return names


def import_posts(store: TagStore, df: pl.DataFrame) -> int:
    """DataFrame の各行を投稿として登録する（1トランザクション）. 登録件数を返す.

    tag_string が空の行は警告を出してスキップする。uploader/approver のユーザーは遅延作成する。
    """
    imported = 0
    with store.begin():
        for row in df.iter_rows(named=True):
            tag_string = row.get("tag_string") or ""
            if not tag_string.strip():
                logger.warning(f"Skipping post without tags: {row}")
                continue

            attrs = {col: row[col] for col in _POST_COLUMNS if row.get(col) is not None}
            for role in ("uploader", "approver"):
                if row.get(role):
                    attrs[f"{role}_id"] = store.find_or_create_user(row[role])

            names = _prepare_tags(store, tag_string)
            store.create_post(names, created_at=row.get("created_at") or None, **attrs)
            imported += 1

    logger.info(f"Imported {imported} posts")
    return imported


def import_fixture(store: TagStore, path: Path | str) -> int:
    return import_posts(store, adapter_for(path).read())
