"""Integration test for the bulk update workflow.

フィクスチャ取り込み → バルク更新（エイリアス・インプリケーション・カテゴリ変更・一括置換）
→ 検索・件数の順に実行し、各段階の結果が一貫していることを確認する。
"""

import json
from pathlib import Path

import pytest

from booru_tag_engine.bulk.executor import BulkUpdateImporter
from booru_tag_engine.bulk.tasks import InMemoryTaskSink, MassUpdateWorker
from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.store import TagStore
from booru_tag_engine.importer import import_fixture
from booru_tag_engine.search.compiler import tag_match
from booru_tag_engine.search.count_cache import CountCache

ADMIN = SearchContext(user_id=1, user_name="admin")


@pytest.fixture
def seeded_store(store: TagStore, tmp_path: Path) -> TagStore:
    fixture = tmp_path / "posts.json"
    fixture.write_text(
        json.dumps(
            [
                {"tag_string": "kitten cute", "rating": "s", "uploader": "alice"},
                {"tag_string": "kitten artist:wokada", "rating": "q", "uploader": "bob"},
                {"tag_string": "puppy cute", "rating": "s", "uploader": "alice"},
                {"tag_string": "hatsune_miku", "rating": "e", "uploader": "alice"},
            ]
        ),
        encoding="utf-8",
    )
    import_fixture(store, fixture)
    return store


class TestBulkWorkflow:
    """取り込みから検索までの一連の流れ."""

    def test_full_script(self, seeded_store: TagStore, config: EngineConfig) -> None:
        store = seeded_store
        sink = InMemoryTaskSink()
        script = """
            create alias kitten -> cat
            create implication cat -> animal
            imply puppy -> animal
            category hatsune_miku -> character
            mass update cute -> adorable
        """
        result = BulkUpdateImporter(script, forum_topic_id=10, store=store, task_sink=sink).process(ADMIN)
        assert result.ok, getattr(result, "message", "")

        assert [m.post_count for m in result.mutations] == [2, 2, 1, 1, 0]
        assert tag_match(store, "kitten", ADMIN) == tag_match(store, "cat", ADMIN) == [2, 1]
        assert tag_match(store, "animal", ADMIN) == [3, 2, 1]
        assert store.get_tag("hatsune_miku").category == 4
        assert tag_match(store, "chartags:1", ADMIN) == [4]

        # 一括置換はコミット後にキューへ入るだけで、まだ実行されていない
        assert len(sink.jobs) == 1
        assert tag_match(store, "adorable", ADMIN) == []

        worker = MassUpdateWorker(store, config)
        for job in sink.drain():
            worker.perform(job)
        assert tag_match(store, "adorable", ADMIN) == [3, 1]
        assert store.get_tag("cute").post_count == 0

    def test_failed_script_changes_nothing(self, seeded_store: TagStore) -> None:
        store = seeded_store
        before = store.conn.execute("SELECT name, category, post_count FROM TAGS ORDER BY name").fetchall()

        result = BulkUpdateImporter(
            "alias kitten -> cat\nimply cat -> animal\nchange cat -> nonsense",
            store=store,
        ).process(ADMIN)

        assert not result.ok
        after = store.conn.execute("SELECT name, category, post_count FROM TAGS ORDER BY name").fetchall()
        assert after == before
        assert store.active_relationships("alias") == []
        assert store.active_relationships("implication") == []
        assert tag_match(store, "kitten", ADMIN) == [2, 1]

    def test_counts_follow_aliases(self, seeded_store: TagStore, config: EngineConfig) -> None:
        store = seeded_store
        cache = CountCache(store, config)
        assert cache.fast_count("kitten") == 2

        BulkUpdateImporter("alias kitten -> cat", store=store).process(ADMIN)

        assert cache.fast_count("kitten") == 2
        assert cache.fast_count("cat") == 2
        assert cache.fast_count("user:alice cat") == 1

    def test_alias_category_conflict(self, seeded_store: TagStore) -> None:
        store = seeded_store
        store.find_or_create_tag("vocaloid", 3)
        result = BulkUpdateImporter(
            "category hatsune_miku -> character\nalias hatsune_miku -> vocaloid",
            store=store,
        ).process(ADMIN)
        assert not result.ok
        assert "Cannot alias tags of different categories (character -> copyright)" in result.message
        assert store.get_tag("hatsune_miku").category == 0
