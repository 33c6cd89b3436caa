"""検索結果件数のキャッシュ.

正規化済みクエリ文字列をキーに件数をキャッシュします。

- 単一タグのクエリは TAGS.post_count（非正規化キャッシュ）をそのまま返す
- それ以外はキャッシュを参照し、なければ COUNT を実行して TTL 付きで保存する
- TTL = clamp(件数, count_cache_min_ttl, count_cache_max_ttl) 秒（件数が多いほど長く保持）
- キャッシュの読み書き失敗はログに残して無視する
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

from loguru import logger

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import ANONYMOUS, SearchContext
from booru_tag_engine.core.exceptions import ExecutionError
from booru_tag_engine.core.store import TagStore

from .compiler import QueryCompiler
from .sql import count_posts
from .terms import Polarity, TermKind
from .tokenizer import normalize_query

CACHE_KEY_PREFIX = "pfc:"


class CountCacheBackend(Protocol):
    def get(self, key: str) -> int | None: ...

    def set(self, key: str, value: int, ttl: int) -> None: ...


class MemoryCountCacheBackend:
    """プロセス内のキャッシュ（スレッドセーフ）. clock はテスト用に差し替え可能."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> int | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: int, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqliteCountCacheBackend:
    """COUNT_CACHE テーブルを使うキャッシュ."""

    def __init__(self, store: TagStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def get(self, key: str) -> int | None:
        row = self._store.conn.execute(
            "SELECT count, expires_at FROM COUNT_CACHE WHERE cache_key = ?",
            (key,),
        ).fetchone()
        if row is None or row[1] <= self._clock():
            return None
        return int(row[0])

    def set(self, key: str, value: int, ttl: int) -> None:
        self._store.conn.execute(
            "INSERT OR REPLACE INTO COUNT_CACHE (cache_key, count, expires_at) VALUES (?, ?, ?)",
            (key, value, self._clock() + ttl),
        )

    def purge_expired(self) -> int:
        cur = self._store.conn.execute("DELETE FROM COUNT_CACHE WHERE expires_at <= ?", (self._clock(),))
        return cur.rowcount


class CountCache:
    """fast_count の実装."""

    def __init__(
        self,
        store: TagStore,
        config: EngineConfig,
        backend: CountCacheBackend | None = None,
        compiler: QueryCompiler | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.backend: CountCacheBackend = backend if backend is not None else MemoryCountCacheBackend()
        self.compiler = compiler if compiler is not None else QueryCompiler.for_store(store, config)

    def effective_query(self, query: str, ctx: SearchContext) -> str:
        """safe mode / 削除済み非表示の暗黙条件をクエリ文字列に付け加える."""
        if ctx.safe_mode:
            query += " rating:s"
        if ctx.hide_deleted:
            has_status = any(
                term.kind is TermKind.METATAG and term.name == "status" for term in self.compiler.classify(query)
            )
            if not has_status:
                query += " -status:deleted"
        return query

    def cache_key(self, query: str, ctx: SearchContext = ANONYMOUS) -> str:
        return CACHE_KEY_PREFIX + normalize_query(self.effective_query(query, ctx))

    def fast_count(self, query: str, ctx: SearchContext = ANONYMOUS) -> int:
        """クエリの件数を返す（キャッシュ優先）.

        Raises:
            SearchError / RangeParseError / LexError: クエリ自体が不正な場合
            ExecutionError: 件数の取得に失敗し、blank_search_fast_count が未設定の場合
        """
        effective = self.effective_query(query, ctx)
        normalized = normalize_query(effective)
        if not normalized and self.config.blank_search_fast_count is not None:
            return self.config.blank_search_fast_count

        count = self._simple_tag_count(normalized)
        if count is not None:
            return count

        key = CACHE_KEY_PREFIX + normalized
        cached = self._cache_get(key)
        if cached is not None:
            logger.debug(f"Count cache hit: {key} = {cached}")
            return cached

        logger.debug(f"Count cache miss: {key}")
        plan = self.compiler.compile(effective, ctx.without_default_filters())
        try:
            count = count_posts(self.store, plan, timeout_ms=self.config.statement_timeout_ms)
        except ExecutionError as e:
            if self.config.blank_search_fast_count is None:
                raise
            logger.warning(f"Count failed for {normalized!r}, using fallback count: {e}")
            return self.config.blank_search_fast_count

        self._cache_set(key, count, self.config.count_cache_ttl(count))
        return count

    def _simple_tag_count(self, normalized: str) -> int | None:
        """単一の通常タグのクエリなら post_count を返す."""
        if not normalized or " " in normalized:
            return None
        terms = self.compiler.classify(normalized)
        if len(terms) != 1:
            return None
        term = terms[0]
        if term.kind is not TermKind.TAG or term.polarity is not Polarity.REQUIRED:
            return None
        name = self.compiler.resolver.resolve(term.name) if self.compiler.resolver else term.name
        tag = self.store.get_tag(name)
        return tag.post_count if tag is not None else None

    def _cache_get(self, key: str) -> int | None:
        try:
            return self.backend.get(key)
        except Exception as e:  # バックエンドの失敗で件数取得を失敗させない
            logger.warning(f"Count cache read failed for {key}: {e}")
            return None

    def _cache_set(self, key: str, value: int, ttl: int) -> None:
        try:
            self.backend.set(key, value, ttl)
        except Exception as e:
            logger.warning(f"Count cache write failed for {key}: {e}")
