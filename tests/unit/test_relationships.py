"""bulk/relationships.py のユニットテスト（検証ルールと承認時の副作用）."""

import pytest

from booru_tag_engine.bulk.relationships import (
    alias_errors,
    approve_alias,
    approve_implication,
    create_alias,
    create_implication,
    implication_errors,
    implication_graph,
    implied_tags,
    reject_relationship,
)
from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.exceptions import ValidationError
from booru_tag_engine.core.store import TagStore


def activate(store: TagStore, kind: str, antecedent: str, consequent: str) -> None:
    store.insert_relationship(kind, antecedent, consequent, status="active")


class TestAliasValidation:
    def test_self_alias(self, store: TagStore, config: EngineConfig) -> None:
        assert alias_errors(store, "cat", "cat", config) == ["Cannot alias a tag to itself"]

    def test_already_aliased(self, store: TagStore, config: EngineConfig) -> None:
        activate(store, "alias", "kitten", "cat")
        assert alias_errors(store, "kitten", "feline", config) == ["kitten is already aliased to cat"]

    def test_consequent_is_aliased(self, store: TagStore, config: EngineConfig) -> None:
        activate(store, "alias", "cat", "feline")
        assert alias_errors(store, "kitten", "cat", config) == ["A tag alias for cat already exists"]

    def test_category_conflict(self, store: TagStore, config: EngineConfig) -> None:
        store.find_or_create_tag("miku", 4)
        store.find_or_create_tag("vocaloid", 3)
        assert alias_errors(store, "miku", "vocaloid", config) == [
            "Cannot alias tags of different categories (character -> copyright)"
        ]

    def test_general_category_is_compatible(self, store: TagStore, config: EngineConfig) -> None:
        store.find_or_create_tag("miku", 4)
        assert alias_errors(store, "miku", "hatsune_miku", config) == []

    def test_secondary_validations(self, store: TagStore) -> None:
        config = EngineConfig(minimum_alias_post_count=2)
        store.create_post("kitten")
        errors = alias_errors(store, "kitten", "cat", config, skip_secondary_validations=False)
        assert errors == [
            "The cat tag needs a corresponding wiki page",
            "The kitten tag must have at least 2 posts for an alias to be created",
        ]
        store.create_wiki_page("cat")
        store.create_post("kitten")
        assert alias_errors(store, "kitten", "cat", config, skip_secondary_validations=False) == []

    def test_create_alias_raises(self, store: TagStore, config: EngineConfig) -> None:
        with pytest.raises(ValidationError) as exc_info:
            create_alias(store, "cat", "cat", config)
        assert exc_info.value.command == "create alias cat -> cat"
        assert str(exc_info.value) == "Error: Cannot alias a tag to itself (create alias cat -> cat)"


class TestImplicationValidation:
    def test_self(self, store: TagStore) -> None:
        assert implication_errors(store, "cat", "cat") == ["Cannot implicate a tag to itself"]

    def test_duplicate(self, store: TagStore) -> None:
        activate(store, "implication", "cat", "animal")
        assert implication_errors(store, "cat", "animal") == ["Implication cat -> animal already exists"]

    def test_transitive(self, store: TagStore) -> None:
        activate(store, "implication", "kitten", "cat")
        activate(store, "implication", "cat", "animal")
        assert implication_errors(store, "kitten", "animal") == [
            "kitten already implies animal through another implication"
        ]

    def test_circular(self, store: TagStore) -> None:
        activate(store, "implication", "cat", "animal")
        assert implication_errors(store, "animal", "cat") == [
            "Tag implication can not create a circular relation with another tag implication"
        ]

    def test_aliased_tags(self, store: TagStore) -> None:
        activate(store, "alias", "kitty", "cat")
        assert implication_errors(store, "kitty", "animal") == [
            "Antecedent tag must not be aliased to another tag (kitty)"
        ]

    def test_secondary_wiki_pages(self, store: TagStore) -> None:
        store.create_wiki_page("cat")
        assert implication_errors(store, "cat", "animal", skip_secondary_validations=False) == [
            "The animal tag needs a corresponding wiki page"
        ]

    def test_graph_helpers(self, store: TagStore) -> None:
        activate(store, "implication", "kitten", "cat")
        activate(store, "implication", "cat", "animal")
        graph = implication_graph(store)
        assert implied_tags(graph, "kitten") == {"cat", "animal"}
        assert implied_tags(graph, "animal") == set()

    def test_create_implication_is_pending(self, store: TagStore) -> None:
        record = create_implication(store, "cat", "animal", forum_topic_id=7, creator_id=None)
        assert record.status == "pending"
        assert record.forum_topic_id == 7
        assert implication_graph(store) == {}


class TestApproveAlias:
    def test_retags_posts(self, store: TagStore, config: EngineConfig) -> None:
        p1 = store.create_post("kitten cute")
        p2 = store.create_post("kitten cat")
        record = create_alias(store, "kitten", "cat", config)

        assert approve_alias(store, record) == 2
        assert store.tag_names_for_post(p1) == ["cat", "cute"]
        assert store.tag_names_for_post(p2) == ["cat"]
        assert store.get_tag("kitten").post_count == 0
        assert store.get_tag("cat").post_count == 2
        assert store.active_alias_consequent("kitten") == "cat"

    def test_collapses_chains(self, store: TagStore, config: EngineConfig) -> None:
        activate(store, "alias", "kitty", "kitten")
        record = create_alias(store, "kitten", "cat", config)
        approve_alias(store, record)
        assert store.active_alias_consequent("kitty") == "cat"

    def test_moves_implications(self, store: TagStore, config: EngineConfig) -> None:
        activate(store, "implication", "kitten", "animal")
        approve_alias(store, create_alias(store, "kitten", "cat", config))
        assert implication_graph(store) == {"cat": {"animal"}}

    def test_copies_category(self, store: TagStore, config: EngineConfig) -> None:
        store.find_or_create_tag("miku", 4)
        approve_alias(store, create_alias(store, "miku", "hatsune_miku", config))
        assert store.get_tag("hatsune_miku").category == 4

    def test_rename_pages(self, store: TagStore, config: EngineConfig) -> None:
        store.create_wiki_page("kitten")
        store.create_artist("kitten")
        approve_alias(store, create_alias(store, "kitten", "cat", config), rename_pages=True)
        assert store.wiki_page_exists("cat")
        assert store.artist_exists("cat")
        assert not store.wiki_page_exists("kitten")


class TestApproveImplication:
    def test_adds_transitive_consequents(self, store: TagStore) -> None:
        activate(store, "implication", "cat", "animal")
        post_id = store.create_post("kitten")
        record = create_implication(store, "kitten", "cat")

        assert approve_implication(store, record) == 1
        assert store.tag_names_for_post(post_id) == ["animal", "cat", "kitten"]
        assert store.get_tag("animal").post_count == 1

    def test_reject(self, store: TagStore) -> None:
        activate(store, "implication", "cat", "animal")
        record = store.find_relationship("implication", "cat", "animal")
        reject_relationship(store, "implication", record)
        assert store.find_relationship("implication", "cat", "animal") is None
        assert store.find_relationship("implication", "cat", "animal", "rejected") is not None
