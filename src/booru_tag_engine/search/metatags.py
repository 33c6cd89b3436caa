"""メタタグ定義.

メタタグ（`id:`, `age:`, `rating:`, `pool:` など）を、列の種類（ColumnKind）ごとの
解析関数と結び付けたレジストリとして定義します。レジストリはカテゴリ集合ごとに1回だけ
構築され（`gentags` などのカテゴリ別メタタグを含む）、検索のたびに型判定は行いません。
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from functools import lru_cache

from booru_tag_engine.core.categories import TagCategories
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.exceptions import RangeParseError
from booru_tag_engine.core.normalize import normalize_tag_name
from booru_tag_engine.core.store import to_db_timestamp

from .plan import (
    FlagPredicate,
    MetatagResult,
    NeverPredicate,
    OrderClause,
    PatternPredicate,
    RangePredicate,
    RelationPredicate,
)
from .ranges import (
    ParsedRange,
    RangeOp,
    parse_date,
    parse_duration,
    parse_filesize_range,
    parse_integer,
    parse_mpixels_range,
    parse_range,
    parse_ratio,
)


class ColumnKind(str, Enum):
    """メタタグが対象とする列の種類."""

    INTEGER = "integer"
    MPIXELS = "mpixels"
    RATIO = "ratio"
    FILESIZE = "filesize"
    DATE = "date"
    AGE = "age"
    STRING_SET = "string_set"  # md5 / filetype / rating
    PATTERN = "pattern"  # source
    FLAG = "flag"  # status / locked
    ASSOCIATION = "association"  # user / fav / pool / parent ...
    DIRECTIVE = "directive"  # limit


MetatagHandler = Callable[[str, SearchContext], MetatagResult]

RANGE_PARSERS: dict[ColumnKind, Callable[[str], ParsedRange]] = {
    ColumnKind.INTEGER: lambda v: parse_range(v, parse_integer, "integer"),
    ColumnKind.MPIXELS: parse_mpixels_range,
    ColumnKind.RATIO: lambda v: parse_range(v, parse_ratio, "ratio"),
    ColumnKind.FILESIZE: parse_filesize_range,
    ColumnKind.DATE: lambda v: parse_range(v, lambda s: parse_date(s).isoformat(), "date"),
}


@dataclass(frozen=True)
class MetatagSpec:
    name: str
    kind: ColumnKind
    handler: MetatagHandler


STATUS_FLAGS: dict[str, FlagPredicate | None] = {
    "pending": FlagPredicate(("is_pending",)),
    "flagged": FlagPredicate(("is_flagged",)),
    "deleted": FlagPredicate(("is_deleted",)),
    "banned": FlagPredicate(("is_banned",)),
    "modqueue": FlagPredicate(("is_pending", "is_flagged"), combine="or"),
    "active": FlagPredicate(("is_pending", "is_flagged", "is_deleted", "is_banned"), value=False),
    "any": None,
    "all": None,
}

# status の値のうち、削除済み非表示フィルタを無効にするもの
STATUS_SHOWING_DELETED = frozenset({"deleted", "any", "all"})

LOCK_FLAGS: dict[str, str] = {
    "rating": "is_rating_locked",
    "note": "is_note_locked",
    "status": "is_status_locked",
}


def _range_handler(kind: ColumnKind, column: str, category: int | None = None) -> MetatagHandler:
    parser = RANGE_PARSERS[kind]

    def handler(value: str, ctx: SearchContext) -> MetatagResult:
        return MetatagResult(RangePredicate(column, parser(value), category))

    return handler


def _age(value: str, ctx: SearchContext) -> MetatagResult:
    """`age:<1d` → 1日以内に作成された投稿. 比較演算子は created_at 上で反転する."""
    parsed = parse_range(value, parse_duration, "duration")
    now = ctx.current_time()

    def ago(seconds: int) -> str:
        return to_db_timestamp(now - timedelta(seconds=seconds))

    flipped = {
        RangeOp.LT: RangeOp.GT,
        RangeOp.LTE: RangeOp.GTE,
        RangeOp.GT: RangeOp.LT,
        RangeOp.GTE: RangeOp.LTE,
        RangeOp.EQ: RangeOp.GTE,
    }
    if parsed.op is RangeOp.BETWEEN:
        lower, upper = parsed.value
        rng = ParsedRange(RangeOp.BETWEEN, (ago(upper), ago(lower)))
    elif parsed.op in flipped:
        rng = ParsedRange(flipped[parsed.op], ago(parsed.value))
    else:
        raise RangeParseError(value, "duration")
    return MetatagResult(RangePredicate("created_at", rng))


def _string_set(column: str, transform: Callable[[str], str] = str.lower) -> MetatagHandler:
    def handler(value: str, ctx: SearchContext) -> MetatagResult:
        items = [transform(v.strip()) for v in value.split(",") if v.strip()]
        if not items:
            raise RangeParseError(value, column)
        if len(items) == 1:
            return MetatagResult(RangePredicate(column, ParsedRange(RangeOp.EQ, items[0])))
        return MetatagResult(RangePredicate(column, ParsedRange(RangeOp.IN, tuple(items))))

    return handler


def _source(value: str, ctx: SearchContext) -> MetatagResult:
    if value.lower() == "none":
        return MetatagResult(RangePredicate("source", ParsedRange(RangeOp.EQ, "")))
    return MetatagResult(PatternPredicate("source", value.lower().rstrip("*") + "*"))


def _status(value: str, ctx: SearchContext) -> MetatagResult:
    key = value.lower()
    if key not in STATUS_FLAGS:
        return MetatagResult(NeverPredicate(f"unknown status {key}"))
    return MetatagResult(STATUS_FLAGS[key])


def _locked(value: str, ctx: SearchContext) -> MetatagResult:
    column = LOCK_FLAGS.get(value.lower())
    if column is None:
        return MetatagResult(NeverPredicate(f"unknown lock {value.lower()}"))
    return MetatagResult(FlagPredicate((column,)))


def _user_name(value: str, ctx: SearchContext) -> str | None:
    """`self` を呼び出し元ユーザー名に解決する（匿名の場合は None）."""
    if value.lower() == "self":
        return ctx.user_name
    return value


def _user_relation(relation: str, allow_any_none: bool = True) -> MetatagHandler:
    def handler(value: str, ctx: SearchContext) -> MetatagResult:
        if allow_any_none and value.lower() in ("any", "none"):
            return MetatagResult(RelationPredicate(relation, value.lower()))
        name = _user_name(value, ctx)
        if name is None:
            return MetatagResult(NeverPredicate(f"{relation}:self without user"))
        return MetatagResult(RelationPredicate(relation, name))

    return handler


def _ordfav(value: str, ctx: SearchContext) -> MetatagResult:
    name = _user_name(value, ctx)
    if name is None:
        return MetatagResult(NeverPredicate("ordfav:self without user"))
    return MetatagResult(RelationPredicate("fav", name), order=OrderClause("ordfav", "desc", (name,)))


def _vote(relation: str) -> MetatagHandler:
    def handler(value: str, ctx: SearchContext) -> MetatagResult:
        name = _user_name(value, ctx)
        if name is None or not (ctx.is_moderator or ctx.is_self(name)):
            return MetatagResult(NeverPredicate(f"{relation} votes are private"))
        return MetatagResult(RelationPredicate(relation, name))

    return handler


def _pool(value: str, ctx: SearchContext) -> MetatagResult:
    key = value.lower()
    if key in ("series", "collection"):
        return MetatagResult(RelationPredicate("pool_category", key))
    if key in ("any", "none"):
        return MetatagResult(RelationPredicate("pool", key))
    return MetatagResult(RelationPredicate("pool", normalize_tag_name(value)))


def _ordpool(value: str, ctx: SearchContext) -> MetatagResult:
    name = normalize_tag_name(value)
    return MetatagResult(RelationPredicate("pool", name), order=OrderClause("ordpool", "asc", (name,)))


def _parent(value: str, ctx: SearchContext) -> MetatagResult:
    key = value.lower()
    if key in ("any", "none"):
        return MetatagResult(RelationPredicate("parent", key))
    try:
        return MetatagResult(RelationPredicate("parent", int(key)))
    except ValueError as e:
        raise RangeParseError(value, "parent") from e


def _child(value: str, ctx: SearchContext) -> MetatagResult:
    key = value.lower()
    if key not in ("any", "none"):
        raise RangeParseError(value, "child")
    return MetatagResult(RelationPredicate("child", key))


def _limit(value: str, ctx: SearchContext) -> MetatagResult:
    try:
        limit = int(value)
    except ValueError as e:
        raise RangeParseError(value, "limit") from e
    if limit < 0:
        raise RangeParseError(value, "limit")
    return MetatagResult(limit=limit)


class MetatagRegistry:
    """メタタグ名 → MetatagSpec の対応表."""

    def __init__(self, specs: list[MetatagSpec]) -> None:
        self._specs = {spec.name: spec for spec in specs}
        self.names = frozenset(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def get(self, name: str) -> MetatagSpec | None:
        return self._specs.get(name.lower())

    def evaluate(self, name: str, value: str, ctx: SearchContext) -> MetatagResult:
        spec = self.get(name)
        if spec is None:
            raise KeyError(name)
        return spec.handler(value, ctx)


@lru_cache(maxsize=8)
def build_metatag_registry(categories: TagCategories) -> MetatagRegistry:
    """カテゴリ集合に対応するメタタグレジストリを構築する（カテゴリ集合ごとにキャッシュ）."""
    specs = [
        MetatagSpec("id", ColumnKind.INTEGER, _range_handler(ColumnKind.INTEGER, "id")),
        MetatagSpec("score", ColumnKind.INTEGER, _range_handler(ColumnKind.INTEGER, "score")),
        MetatagSpec("favcount", ColumnKind.INTEGER, _range_handler(ColumnKind.INTEGER, "fav_count")),
        MetatagSpec("width", ColumnKind.INTEGER, _range_handler(ColumnKind.INTEGER, "image_width")),
        MetatagSpec("height", ColumnKind.INTEGER, _range_handler(ColumnKind.INTEGER, "image_height")),
        MetatagSpec("mpixels", ColumnKind.MPIXELS, _range_handler(ColumnKind.MPIXELS, "mpixels")),
        MetatagSpec("ratio", ColumnKind.RATIO, _range_handler(ColumnKind.RATIO, "ratio")),
        MetatagSpec("filesize", ColumnKind.FILESIZE, _range_handler(ColumnKind.FILESIZE, "file_size")),
        MetatagSpec("tagcount", ColumnKind.INTEGER, _range_handler(ColumnKind.INTEGER, "tag_count")),
        MetatagSpec("date", ColumnKind.DATE, _range_handler(ColumnKind.DATE, "created_date")),
        MetatagSpec("age", ColumnKind.AGE, _age),
        MetatagSpec("md5", ColumnKind.STRING_SET, _string_set("md5")),
        MetatagSpec("filetype", ColumnKind.STRING_SET, _string_set("file_ext")),
        MetatagSpec("rating", ColumnKind.STRING_SET, _string_set("rating", lambda v: v[:1].lower())),
        MetatagSpec("source", ColumnKind.PATTERN, _source),
        MetatagSpec("status", ColumnKind.FLAG, _status),
        MetatagSpec("locked", ColumnKind.FLAG, _locked),
        MetatagSpec("parent", ColumnKind.ASSOCIATION, _parent),
        MetatagSpec("child", ColumnKind.ASSOCIATION, _child),
        MetatagSpec("user", ColumnKind.ASSOCIATION, _user_relation("uploader")),
        MetatagSpec("approver", ColumnKind.ASSOCIATION, _user_relation("approver")),
        MetatagSpec("fav", ColumnKind.ASSOCIATION, _user_relation("fav", allow_any_none=False)),
        MetatagSpec("ordfav", ColumnKind.ASSOCIATION, _ordfav),
        MetatagSpec("pool", ColumnKind.ASSOCIATION, _pool),
        MetatagSpec("ordpool", ColumnKind.ASSOCIATION, _ordpool),
        MetatagSpec("upvote", ColumnKind.ASSOCIATION, _vote("upvote")),
        MetatagSpec("downvote", ColumnKind.ASSOCIATION, _vote("downvote")),
        MetatagSpec("limit", ColumnKind.DIRECTIVE, _limit),
    ]
    for category in categories:
        specs.append(
            MetatagSpec(
                category.count_metatag,
                ColumnKind.INTEGER,
                _range_handler(ColumnKind.INTEGER, "category_tag_count", category.code),
            )
        )
    return MetatagRegistry(specs)
