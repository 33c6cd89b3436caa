"""config.py / categories.py のユニットテスト."""

import json
from pathlib import Path

import pytest

from booru_tag_engine.core.categories import DEFAULT_CATEGORIES, TagCategories, TagCategory
from booru_tag_engine.core.config import EngineConfig, config_from_dict, load_config
from booru_tag_engine.core.exceptions import ValidationError


class TestEngineConfig:
    def test_defaults(self) -> None:
        config = EngineConfig()
        assert config.tag_query_limit == 6
        assert config.blank_search_fast_count is None
        assert config.categories is DEFAULT_CATEGORIES

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError, match="tag_query_limit"):
            EngineConfig(tag_query_limit=0)

    def test_invalid_ttl(self) -> None:
        with pytest.raises(ValueError):
            EngineConfig(count_cache_min_ttl=100, count_cache_max_ttl=10)

    def test_unlimited_tag(self) -> None:
        config = EngineConfig()
        assert config.is_unlimited_tag("Rating:Safe")
        assert config.is_unlimited_tag("-status:deleted")
        assert not config.is_unlimited_tag("cat")


class TestLoadConfig:
    def test_load(self, tmp_path: Path) -> None:
        path = tmp_path / "engine_config.json"
        path.write_text(
            json.dumps(
                {
                    "tag_query_limit": 2,
                    "unlimited_tag_patterns": ["Rating:*"],
                    "blank_search_fast_count": 1000,
                    "categories": [
                        {"code": 0, "name": "General", "aliases": ["gen"]},
                        {"code": 7, "name": "species", "short_name": "spec"},
                    ],
                }
            ),
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.tag_query_limit == 2
        assert config.unlimited_tag_patterns == ("rating:*",)
        assert config.blank_search_fast_count == 1000
        assert config.categories.value_for("species") == 7
        assert config.categories.general.name == "general"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_config(path)

    def test_not_an_object(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError, match="JSON object"):
            load_config(path)

    @pytest.mark.parametrize(
        "data",
        [
            {"unknown_key": 1},
            {"tag_query_limit": "6"},
            {"tag_query_limit": True},
            {"statement_timeout_ms": "fast"},
            {"count_metatags_against_limit": 1},
            {"unlimited_tag_patterns": "rating:s"},
            {"categories": [{"name": "general"}]},
            {"categories": []},
        ],
    )
    def test_invalid_values(self, data: dict) -> None:
        with pytest.raises(ValueError):
            config_from_dict(data)


class TestTagCategories:
    def test_lookup(self) -> None:
        assert DEFAULT_CATEGORIES.value_for("Character") == 4
        assert DEFAULT_CATEGORIES.value_for("ch") == 4
        assert DEFAULT_CATEGORIES.name_for(3) == "copyright"
        assert DEFAULT_CATEGORIES.name_for(99) == "unknown"

    def test_unknown(self) -> None:
        with pytest.raises(ValidationError, match="Unknown category: nonsense"):
            DEFAULT_CATEGORIES.value_for("nonsense")

    def test_duplicates(self) -> None:
        with pytest.raises(ValueError):
            TagCategories([TagCategory(0, "general", "gen"), TagCategory(0, "other", "oth")])
        with pytest.raises(ValueError):
            TagCategories([TagCategory(0, "general", "gen", ("x",)), TagCategory(1, "artist", "art", ("x",))])

    def test_count_metatag(self) -> None:
        assert [c.count_metatag for c in DEFAULT_CATEGORIES] == [
            "gentags",
            "arttags",
            "copytags",
            "chartags",
            "metatags",
        ]
