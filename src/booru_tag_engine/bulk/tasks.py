"""一括置換（mass update）タスク.

バルク更新は一括置換を実行せず、TaskSink にジョブを渡すだけです（完了を待たない）。
ジョブの実行側（MassUpdateWorker）は、検索と同じコンパイラで対象投稿を求めて
タグを付け替えます。件数の見積もりも同じコンパイラを使うため、両者の対象は一致します。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.store import TagStore
from booru_tag_engine.search.compiler import QueryCompiler
from booru_tag_engine.search.sql import count_posts, select_post_ids
from booru_tag_engine.search.terms import Polarity, TermKind

from .relationships import implication_graph, implied_tags


@dataclass(frozen=True)
class MassUpdateJob:
    query: str
    replacement: str
    actor_id: int | None = None
    actor_name: str | None = None

    @property
    def context(self) -> SearchContext:
        return SearchContext(user_id=self.actor_id, user_name=self.actor_name)


class TaskSink(Protocol):
    """ジョブの受け口. enqueue はすぐに戻り、完了を報告しない."""

    def enqueue(self, job: MassUpdateJob) -> None: ...


class InMemoryTaskSink:
    """ジョブをメモリに溜めるだけの TaskSink（CLI とテスト用）."""

    def __init__(self) -> None:
        self._jobs: list[MassUpdateJob] = []
        self._lock = threading.Lock()

    def enqueue(self, job: MassUpdateJob) -> None:
        with self._lock:
            self._jobs.append(job)
        logger.info(f"Mass update enqueued: {job.query} -> {job.replacement}")

    @property
    def jobs(self) -> list[MassUpdateJob]:
        with self._lock:
            return list(self._jobs)

    def drain(self) -> list[MassUpdateJob]:
        with self._lock:
            jobs, self._jobs = self._jobs, []
        return jobs


def estimate_mass_update(store: TagStore, config: EngineConfig, query: str, ctx: SearchContext | None = None) -> int:
    """一括置換の対象投稿数."""
    compiler = QueryCompiler.for_store(store, config)
    plan = compiler.compile(query, ctx or SearchContext())
    return count_posts(store, plan, timeout_ms=config.statement_timeout_ms)


class MassUpdateWorker:
    """MassUpdateJob の実行側."""

    def __init__(self, store: TagStore, config: EngineConfig) -> None:
        self.store = store
        self.config = config
        self.compiler = QueryCompiler.for_store(store, config)

    def tag_changes(self, job: MassUpdateJob) -> tuple[list[str], list[str]]:
        """(外すタグ, 付けるタグ) を返す. 置換側の `-tag` は削除として扱う."""
        resolve = self.compiler.resolver.resolve if self.compiler.resolver else (lambda name: name)
        removals = [resolve(t.name) for t in self.compiler.classify(job.query) if t.kind is TermKind.TAG]
        additions: list[str] = []
        for term in self.compiler.classify(job.replacement):
            if term.kind is not TermKind.TAG:
                continue
            name = resolve(term.name)
            if term.polarity is Polarity.NEGATED:
                removals.append(name)
            else:
                additions.append(name)

        graph = implication_graph(self.store)
        expanded = list(additions)
        for name in additions:
            expanded.extend(sorted(implied_tags(graph, name)))
        removals = [name for name in dict.fromkeys(removals) if name not in expanded]
        return removals, list(dict.fromkeys(expanded))

    def perform(self, job: MassUpdateJob) -> int:
        """ジョブを実行する. 更新した投稿数を返す."""
        plan = self.compiler.compile(job.query, job.context)
        removals, additions = self.tag_changes(job)
        with self.store.begin():
            post_ids = select_post_ids(self.store, plan)
            for post_id in post_ids:
                self.store.remove_post_tags(post_id, removals)
                self.store.add_post_tags(post_id, additions)
        logger.info(f"Mass update performed: {job.query} -> {job.replacement} (posts={len(post_ids)})")
        return len(post_ids)
