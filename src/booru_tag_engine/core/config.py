"""エンジン設定.

検索ポリシー（タグ数上限・上限対象外タグ）、件数キャッシュのTTL、タグカテゴリ集合などを
JSON ファイルから読み込み、検証済みの設定オブジェクトとして提供します。

使用例:
    >>> config = load_config(Path("engine_config.json"))
    >>> config.tag_query_limit
    6
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path

from loguru import logger

from .categories import DEFAULT_CATEGORIES, TagCategories, TagCategory

DEFAULT_UNLIMITED_TAG_PATTERNS = ("rating:s*", "status:deleted", "-status:deleted", "limit:*")


@dataclass(frozen=True)
class EngineConfig:
    """エンジン設定.

    JSON形式:
        {
            "tag_query_limit": 6,
            "unlimited_tag_patterns": ["rating:s*", "limit:*"],
            "count_cache_min_ttl": 180,
            "blank_search_fast_count": null,
            "categories": [
                {"code": 0, "name": "general", "short_name": "gen", "aliases": ["gen"]}
            ]
        }
    """

    tag_query_limit: int = 6
    unlimited_tag_patterns: tuple[str, ...] = DEFAULT_UNLIMITED_TAG_PATTERNS
    count_metatags_against_limit: bool = False
    count_cache_min_ttl: int = 180
    count_cache_max_ttl: int = 72000
    blank_search_fast_count: int | None = None
    statement_timeout_ms: int | None = 3000
    minimum_alias_post_count: int = 50
    categories: TagCategories = field(default=DEFAULT_CATEGORIES)

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        """設定値の妥当性を検証.

        Raises:
            ValueError: 範囲外の値が含まれている場合
        """
        if self.tag_query_limit < 1:
            raise ValueError(f"tag_query_limit must be >= 1, got {self.tag_query_limit}")
        if self.count_cache_min_ttl < 0 or self.count_cache_max_ttl < self.count_cache_min_ttl:
            msg = (
                "count_cache_min_ttl/count_cache_max_ttl must satisfy 0 <= min <= max, "
                f"got {self.count_cache_min_ttl}/{self.count_cache_max_ttl}"
            )
            raise ValueError(msg)
        if self.statement_timeout_ms is not None and self.statement_timeout_ms <= 0:
            raise ValueError(f"statement_timeout_ms must be positive or null, got {self.statement_timeout_ms}")
        if self.minimum_alias_post_count < 0:
            raise ValueError(f"minimum_alias_post_count must be >= 0, got {self.minimum_alias_post_count}")
        if len(self.categories) == 0:
            raise ValueError("categories must not be empty")

    def is_unlimited_tag(self, token: str) -> bool:
        """タグ数上限の対象外となるトークンか判定する（例: `rating:s`）."""
        token = token.lower()
        return any(fnmatchcase(token, pattern) for pattern in self.unlimited_tag_patterns)

    def count_cache_ttl(self, count: int) -> int:
        """件数に応じたキャッシュTTL（秒）. 件数が多いほど長く保持する."""
        return max(self.count_cache_min_ttl, min(count, self.count_cache_max_ttl))


_INT_KEYS = {
    "tag_query_limit",
    "count_cache_min_ttl",
    "count_cache_max_ttl",
    "minimum_alias_post_count",
}
_NULLABLE_INT_KEYS = {"blank_search_fast_count", "statement_timeout_ms"}


def _parse_categories(raw: object) -> TagCategories:
    if not isinstance(raw, list):
        raise ValueError(f"categories must be a list, got {type(raw)}")

    categories: list[TagCategory] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid category entry: expected dict, got {type(entry)}")
        try:
            categories.append(
                TagCategory(
                    code=int(entry["code"]),
                    name=str(entry["name"]).lower(),
                    short_name=str(entry.get("short_name", entry["name"])).lower(),
                    aliases=tuple(str(a).lower() for a in entry.get("aliases", [])),
                )
            )
        except KeyError as e:
            raise ValueError(f"Category entry is missing key {e}: {entry}") from e
    return TagCategories(categories)


def config_from_dict(data: dict) -> EngineConfig:
    """辞書から設定オブジェクトを生成する.

    Raises:
        ValueError: 未知のキー、または型・値が不正な場合
    """
    kwargs: dict[str, object] = {}
    for key, value in data.items():
        if key in _INT_KEYS:
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValueError(f"Invalid value for '{key}': expected int, got {value!r}")
            kwargs[key] = value
        elif key in _NULLABLE_INT_KEYS:
            if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
                raise ValueError(f"Invalid value for '{key}': expected int or null, got {value!r}")
            kwargs[key] = value
        elif key == "count_metatags_against_limit":
            if not isinstance(value, bool):
                raise ValueError(f"Invalid value for '{key}': expected bool, got {value!r}")
            kwargs[key] = value
        elif key == "unlimited_tag_patterns":
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"Invalid value for '{key}': expected list of strings")
            kwargs[key] = tuple(v.lower() for v in value)
        elif key == "categories":
            kwargs[key] = _parse_categories(value)
        else:
            raise ValueError(f"Unknown config key: '{key}'")
    return EngineConfig(**kwargs)  # type: ignore[arg-type]


def load_config(config_path: Path | str) -> EngineConfig:
    """JSONファイルから設定を読み込む.

    Args:
        config_path: 設定JSONファイルのパス

    Returns:
        設定オブジェクト

    Raises:
        FileNotFoundError: ファイルが存在しない場合
        ValueError: JSON形式が不正、または無効な設定値が含まれている場合
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        msg = f"Invalid JSON in config file: {config_path}"
        raise ValueError(msg) from e

    if not isinstance(data, dict):
        msg = f"Config file must contain a JSON object, got {type(data)}"
        raise ValueError(msg)

    config = config_from_dict(data)
    logger.info(f"Loaded {len(data)} config keys from {config_path}")
    return config
