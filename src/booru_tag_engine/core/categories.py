"""タグカテゴリ定義.

カテゴリは「名前付き・順序付き・安定した整数コード」の固定集合として扱います。
集合そのものは設定（EngineConfig.categories）で差し替え可能で、ここでは既定値
（Danbooru 互換: general=0, artist=1, copyright=3, character=4, meta=5）を定義します。
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .exceptions import ValidationError


@dataclass(frozen=True)
class TagCategory:
    code: int
    name: str
    short_name: str
    aliases: tuple[str, ...] = field(default_factory=tuple)

    @property
    def count_metatag(self) -> str:
        """カテゴリ別タグ数メタタグ名（例: `gentags`）."""
        return f"{self.short_name}tags"


class TagCategories:
    """順序付きカテゴリ集合.

    名前・別名（`char` / `ch` など）・整数コードの相互変換を提供します。
    """

    def __init__(self, categories: Iterable[TagCategory]) -> None:
        self._categories = tuple(sorted(categories, key=lambda c: c.code))
        self._by_name: dict[str, TagCategory] = {}
        self._by_code: dict[int, TagCategory] = {}
        for category in self._categories:
            if category.code in self._by_code:
                raise ValueError(f"Duplicate category code: {category.code}")
            self._by_code[category.code] = category
            for key in (category.name, *category.aliases):
                key = key.lower()
                if key in self._by_name:
                    raise ValueError(f"Duplicate category name or alias: {key}")
                self._by_name[key] = category

    def __iter__(self) -> Iterator[TagCategory]:
        return iter(self._categories)

    def __len__(self) -> int:
        return len(self._categories)

    @property
    def names(self) -> list[str]:
        return [c.name for c in self._categories]

    @property
    def general(self) -> TagCategory:
        """コード最小のカテゴリ（既定では general）."""
        return self._categories[0]

    def find(self, name: str) -> TagCategory | None:
        return self._by_name.get(name.strip().lower())

    def value_for(self, name: str) -> int:
        """カテゴリ名（または別名）から整数コードを返す.

        Raises:
            ValidationError: 未知のカテゴリ名の場合
        """
        category = self.find(name)
        if category is None:
            raise ValidationError([f"Unknown category: {name}. Valid categories: {', '.join(self.names)}"])
        return category.code

    def name_for(self, code: int) -> str:
        category = self._by_code.get(code)
        return category.name if category else "unknown"


DEFAULT_CATEGORIES = TagCategories(
    [
        TagCategory(0, "general", "gen", ("gen",)),
        TagCategory(1, "artist", "art", ("art",)),
        TagCategory(3, "copyright", "copy", ("copy", "co")),
        TagCategory(4, "character", "char", ("char", "ch")),
        TagCategory(5, "meta", "meta"),
    ]
)
