"""tag_match のユニットテスト（ストアに対する検索結果）."""

from datetime import UTC, datetime

import pytest

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.exceptions import SearchError
from booru_tag_engine.core.store import TagStore
from booru_tag_engine.search.compiler import QueryCompiler, tag_match

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def ids(store: TagStore, query: str, ctx: SearchContext | None = None, **kwargs) -> list[int]:
    return tag_match(store, query, ctx or SearchContext(now=NOW), **kwargs)


class TestTagSets:
    """タグの積集合・和集合・差集合."""

    @pytest.fixture
    def posts(self, store: TagStore) -> dict[str, int]:
        return {
            "ab": store.create_post("aaa bbb"),
            "a": store.create_post("aaa"),
            "bc": store.create_post("bbb ccc"),
        }

    def test_intersection_is_commutative(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "aaa bbb") == ids(store, "bbb aaa") == [posts["ab"]]

    def test_negation_only(self, store: TagStore) -> None:
        """除外のみのクエリでもエラーにならない."""
        store.create_post("aaa")
        assert ids(store, "-aaa") == []

    def test_negation(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "aaa -bbb") == [posts["a"]]

    def test_optional_union(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "~aaa ~ccc") == [posts["bc"], posts["a"], posts["ab"]]
        assert ids(store, "bbb ~aaa ~zzz") == [posts["ab"]]

    def test_wildcard(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "cc*") == [posts["bc"]]
        assert ids(store, "-b*") == [posts["a"]]

    def test_unknown_tag(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "nothing") == []

    def test_blank_returns_all_newest_first(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "") == [posts["bc"], posts["a"], posts["ab"]]

    def test_limit_and_offset(self, store: TagStore, posts: dict[str, int]) -> None:
        assert ids(store, "", limit=1) == [posts["bc"]]
        assert ids(store, "limit:2") == [posts["bc"], posts["a"]]


class TestTagLimit:
    def test_six_tags_plus_unlimited_metatags(self, store: TagStore) -> None:
        ids(store, "a b c d e f rating:s -status:deleted limit:10")

    def test_seven_tags(self, store: TagStore) -> None:
        with pytest.raises(SearchError):
            ids(store, "a b c d e f g")


class TestAttributeSearch:
    def test_filesize_units(self, store: TagStore) -> None:
        post_id = store.create_post("cat", file_size=1048576)
        assert ids(store, "filesize:1mb") == [post_id]
        assert ids(store, "filesize:1048000b") == []
        assert ids(store, "filesize:1048576") == [post_id]

    def test_score_and_order(self, store: TagStore) -> None:
        low = store.create_post("cat", score=1)
        high = store.create_post("cat", score=10)
        mid = store.create_post("cat", score=5)
        assert ids(store, "cat order:score") == [high, mid, low]
        assert ids(store, "cat order:score_asc") == [low, mid, high]
        assert ids(store, "score:>=5 order:id") == [high, mid]

    def test_rating_and_safe_mode(self, store: TagStore) -> None:
        safe = store.create_post("cat", rating="s")
        store.create_post("cat", rating="e")
        assert ids(store, "cat", SearchContext(safe_mode=True)) == [safe]
        assert ids(store, "rating:safe") == [safe]

    def test_status_and_hide_deleted(self, store: TagStore) -> None:
        alive = store.create_post("cat")
        deleted = store.create_post("cat", is_deleted=True)
        pending = store.create_post("cat", is_pending=True)
        hidden = SearchContext(hide_deleted=True)
        assert ids(store, "cat", hidden) == [pending, alive]
        assert ids(store, "cat status:deleted", hidden) == [deleted]
        assert ids(store, "cat status:any", hidden) == [pending, deleted, alive]
        assert ids(store, "status:active") == [alive]
        assert ids(store, "status:modqueue") == [pending]

    def test_age_and_date(self, store: TagStore) -> None:
        old = store.create_post("cat", created_at="2024-01-15 00:00:00")
        recent = store.create_post("cat", created_at="2024-05-31 18:00:00")
        assert ids(store, "age:<1d") == [recent]
        assert ids(store, "age:>1w") == [old]
        assert ids(store, "date:2024-01-15") == [old]
        assert ids(store, "date:2024-01-01..2024-02-01") == [old]

    def test_source(self, store: TagStore) -> None:
        pixiv = store.create_post("cat", source="https://www.pixiv.net/artworks/1")
        empty = store.create_post("cat")
        assert ids(store, "source:https://www.pixiv.net*") == [pixiv]
        assert ids(store, "source:none") == [empty]

    def test_mpixels_and_ratio(self, store: TagStore) -> None:
        wide = store.create_post("cat", image_width=1920, image_height=1080)
        square = store.create_post("cat", image_width=1000, image_height=1000)
        assert ids(store, "ratio:16:9") == [wide]
        assert ids(store, "mpixels:1") == [square]
        assert ids(store, "cat order:landscape") == [wide, square]

    def test_tagcount_and_category_count(self, store: TagStore) -> None:
        store.find_or_create_tag("hatsune_miku", 4)
        one = store.create_post("cat")
        three = store.create_post("cat dog hatsune_miku")
        assert ids(store, "tagcount:3") == [three]
        assert ids(store, "chartags:1") == [three]
        assert ids(store, "chartags:0") == [one]
        assert ids(store, "order:tagcount") == [three, one]

    def test_parent_and_child(self, store: TagStore) -> None:
        parent = store.create_post("cat")
        child = store.create_post("cat", parent_id=parent)
        assert ids(store, f"parent:{parent}") == [child, parent]
        assert ids(store, "parent:none") == [parent]
        assert ids(store, "child:any") == [parent]

    def test_custom_order(self, store: TagStore) -> None:
        a = store.create_post("cat")
        b = store.create_post("cat")
        c = store.create_post("cat")
        assert ids(store, f"id:{b},{c},{a} order:custom") == [b, c, a]


class TestUserRelations:
    def test_uploader_and_fav(self, store: TagStore) -> None:
        alice = store.find_or_create_user("alice")
        bob = store.find_or_create_user("bob")
        first = store.create_post("cat", uploader_id=alice)
        second = store.create_post("cat", uploader_id=bob)
        store.add_favorite(alice, second)
        store.add_favorite(alice, first)

        assert ids(store, "user:alice") == [first]
        assert ids(store, "user:ALICE") == [first]
        assert ids(store, "-user:alice cat") == [second]
        assert ids(store, "fav:alice") == [second, first]
        # ordfav はお気に入りに追加した新しい順
        assert ids(store, "ordfav:alice") == [first, second]
        assert ids(store, "favcount:1") == [second, first]

        ctx = SearchContext(user_id=alice, user_name="alice")
        assert ids(store, "fav:self", ctx) == [second, first]

    def test_votes(self, store: TagStore) -> None:
        alice = store.find_or_create_user("alice")
        post_id = store.create_post("cat")
        store.add_vote(alice, post_id, 1)
        assert ids(store, "upvote:alice", SearchContext(user_name="alice")) == [post_id]
        assert ids(store, "upvote:alice", SearchContext(user_name="bob")) == []
        assert ids(store, "score:1") == [post_id]


class TestPools:
    def test_pool_and_ordpool(self, store: TagStore) -> None:
        a = store.create_post("cat")
        b = store.create_post("cat")
        c = store.create_post("cat")
        store.create_pool("My Pool", [c, a, b])
        store.create_pool("Other", [a], category="collection")

        assert ids(store, "pool:my_pool") == [c, b, a]
        assert ids(store, "pool:any") == [c, b, a]
        assert ids(store, "pool:collection") == [a]
        assert ids(store, "ordpool:my_pool") == [c, a, b]


class TestAliases:
    def test_alias_resolution(self, store: TagStore) -> None:
        post_id = store.create_post("cat")
        store.insert_relationship("alias", "kitty", "cat", status="active")
        assert ids(store, "kitty") == ids(store, "cat") == [post_id]
        assert ids(store, "-kitty") == []

    def test_compiler_sees_new_alias(self, store: TagStore, config: EngineConfig) -> None:
        compiler = QueryCompiler.for_store(store, config)
        assert compiler.compile("kitty", SearchContext()).describe()["required"] == {"kitty"}
        store.insert_relationship("alias", "kitty", "cat", status="active")
        assert compiler.compile("kitty", SearchContext()).describe()["required"] == {"cat"}
