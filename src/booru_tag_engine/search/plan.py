"""検索プラン.

QueryCompiler の出力。ストア非依存の表現で、search.sql がSQLに変換します。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .ranges import ParsedRange


@dataclass(frozen=True)
class TagFilter:
    """タグによる投稿集合の指定（ワイルドカードの場合は name がGLOBパターン）."""

    name: str
    wildcard: bool = False


@dataclass(frozen=True)
class RangePredicate:
    """列の比較条件.

    column は search.sql の論理列名（`id`, `score`, `file_size`, `category_tag_count` など）。
    category は `category_tag_count` の対象カテゴリコード。
    """

    column: str
    range: ParsedRange
    category: int | None = None
    negated: bool = False

    def describe(self) -> str:
        column = self.column if self.category is None else f"{self.column}[{self.category}]"
        return f"{'-' if self.negated else ''}{column}:{self.range.describe()}"


@dataclass(frozen=True)
class PatternPredicate:
    """大文字小文字を区別しない前方一致（`*` はワイルドカード）."""

    column: str
    pattern: str
    negated: bool = False

    def describe(self) -> str:
        return f"{'-' if self.negated else ''}{self.column}~{self.pattern}"


@dataclass(frozen=True)
class FlagPredicate:
    """真偽値列の条件. combine="and" は全列が value、"or" はいずれかの列が value."""

    columns: tuple[str, ...]
    value: bool = True
    combine: str = "and"
    negated: bool = False

    def describe(self) -> str:
        joined = f" {self.combine} ".join(self.columns)
        return f"{'-' if self.negated else ''}{joined}={int(self.value)}"


@dataclass(frozen=True)
class RelationPredicate:
    """関連テーブル経由の条件（投稿者・承認者・お気に入り・プール・親子・投票）.

    relation: uploader / approver / fav / pool / pool_category / parent / child / upvote / downvote
    value: ユーザー名・プール名（GLOB）・投稿ID、または "any" / "none"
    """

    relation: str
    value: str | int
    negated: bool = False

    def describe(self) -> str:
        return f"{'-' if self.negated else ''}{self.relation}:{self.value}"


@dataclass(frozen=True)
class NeverPredicate:
    """常に偽（閲覧権限のない投票検索など）."""

    reason: str = ""
    negated: bool = False

    def describe(self) -> str:
        return f"{'-' if self.negated else ''}never({self.reason})"


Predicate = Union[RangePredicate, PatternPredicate, FlagPredicate, RelationPredicate, NeverPredicate]


@dataclass(frozen=True)
class OrderClause:
    """並び順.

    key は `id`, `score`, `ordfav`, `ordpool`, `custom` など。params は
    カテゴリコード・ユーザー名・プール名・投稿ID列など、key ごとの引数。
    """

    key: str = "id"
    direction: str = "desc"
    params: tuple[object, ...] = ()

    def describe(self) -> str:
        if self.key == "random":
            return "random"
        return f"{self.key}-{self.direction}"


DEFAULT_ORDER = OrderClause()


@dataclass(frozen=True)
class MetatagResult:
    """メタタグ1つを評価した結果."""

    predicate: Predicate | None = None
    order: OrderClause | None = None
    limit: int | None = None


@dataclass(frozen=True)
class QueryPlan:
    """コンパイル済みの検索プラン.

    結果集合 = (required の積集合) ∩ (optional の和集合, optional がある場合) − (negated の和集合)
    に predicates を AND で適用したもの。
    """

    required: tuple[TagFilter, ...] = ()
    negated: tuple[TagFilter, ...] = ()
    optional: tuple[TagFilter, ...] = ()
    predicates: tuple[Predicate, ...] = ()
    order: OrderClause = field(default=DEFAULT_ORDER)
    limit: int | None = None
    query: str = ""

    @property
    def is_blank(self) -> bool:
        return not (self.required or self.negated or self.optional or self.predicates)

    def describe(self) -> dict[str, object]:
        """プランを辞書で再記述する（テスト・explain 用）.

        Examples:
            >>> plan.describe()["order"]
            'score-desc'
        """
        return {
            "required": {f.name for f in self.required},
            "negated": {f.name for f in self.negated},
            "optional": {f.name for f in self.optional},
            "predicates": [p.describe() for p in self.predicates],
            "order": self.order.describe(),
            "limit": self.limit,
        }
