"""QueryPlan → SQLite SQL.

利用者の入力値は常にパラメータとして渡し、SQL文字列には埋め込みません。
列名・並び順は下記の固定表からのみ選びます。
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from booru_tag_engine.core.store import TagStore

from .plan import (
    FlagPredicate,
    NeverPredicate,
    OrderClause,
    PatternPredicate,
    Predicate,
    QueryPlan,
    RangePredicate,
    RelationPredicate,
    TagFilter,
)
from .ranges import ParsedRange, RangeOp

_MPIXELS_SQL = "(p.image_width * p.image_height / 1000000.0)"
_RATIO_SQL = "ROUND(CAST(p.image_width AS REAL) / NULLIF(p.image_height, 0), 2)"
_TAG_COUNT_SQL = "(SELECT COUNT(*) FROM POST_TAGS ptc WHERE ptc.post_id = p.post_id)"
_CATEGORY_TAG_COUNT_SQL = (
    "(SELECT COUNT(*) FROM POST_TAGS ptc JOIN TAGS tc ON tc.tag_id = ptc.tag_id "
    "WHERE ptc.post_id = p.post_id AND tc.category = ?)"
)

COLUMN_SQL: dict[str, str] = {
    "id": "p.post_id",
    "score": "p.score",
    "fav_count": "p.fav_count",
    "image_width": "p.image_width",
    "image_height": "p.image_height",
    "file_size": "p.file_size",
    "md5": "p.md5",
    "file_ext": "p.file_ext",
    "rating": "p.rating",
    "source": "p.source",
    "created_at": "p.created_at",
    "created_date": "date(p.created_at)",
    "mpixels": _MPIXELS_SQL,
    "ratio": _RATIO_SQL,
    "tag_count": _TAG_COUNT_SQL,
}

FLAG_COLUMNS = frozenset(
    {
        "is_pending",
        "is_flagged",
        "is_deleted",
        "is_banned",
        "is_rating_locked",
        "is_note_locked",
        "is_status_locked",
    }
)

ORDER_SQL: dict[str, str] = {
    "id": "p.post_id",
    "score": "p.score",
    "favcount": "p.fav_count",
    "change": "p.updated_at",
    "mpixels": _MPIXELS_SQL,
    "filesize": "p.file_size",
    "tagcount": _TAG_COUNT_SQL,
    "ratio": _RATIO_SQL,
}

_TAG_SUBQUERY = "SELECT pt.post_id FROM POST_TAGS pt JOIN TAGS t ON t.tag_id = pt.tag_id WHERE t.name {op} ?"
_USER_ID_SUBQUERY = "(SELECT user_id FROM USERS WHERE name = ?)"
_POOL_EXISTS = (
    "EXISTS (SELECT 1 FROM POOL_POSTS pp JOIN POOLS po ON po.pool_id = pp.pool_id "
    "WHERE pp.post_id = p.post_id AND po.is_deleted = 0{extra})"
)
_OPS = {RangeOp.EQ: "=", RangeOp.LT: "<", RangeOp.LTE: "<=", RangeOp.GT: ">", RangeOp.GTE: ">="}


@dataclass(frozen=True)
class QueryFragment:
    """WHERE句の断片とパラメータ."""

    where: str
    params: tuple[object, ...] = ()

    def negate(self) -> QueryFragment:
        return QueryFragment(f"NOT ({self.where})", self.params)


TRUE = QueryFragment("1 = 1")
FALSE = QueryFragment("0 = 1")


def _combine(fragments: Iterable[QueryFragment], joiner: str, empty: QueryFragment) -> QueryFragment:
    fragments = list(fragments)
    if not fragments:
        return empty
    if len(fragments) == 1:
        return fragments[0]
    params: list[object] = []
    for f in fragments:
        params.extend(f.params)
    return QueryFragment(f" {joiner} ".join(f"({f.where})" for f in fragments), tuple(params))


def and_all(fragments: Iterable[QueryFragment]) -> QueryFragment:
    return _combine(fragments, "AND", TRUE)


def or_any(fragments: Iterable[QueryFragment]) -> QueryFragment:
    return _combine(fragments, "OR", FALSE)


def escape_glob(pattern: str) -> str:
    """GLOBの文字クラス `[` をリテラル化する（`*` / `?` はワイルドカードのまま）."""
    return pattern.replace("[", "[[]")


def escape_like(pattern: str) -> str:
    """`*` を `%` に、LIKE の特殊文字（`%` `_` `\\`）をエスケープする."""
    escaped = pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


def tag_fragment(tag: TagFilter) -> QueryFragment:
    """tag を持つ投稿の集合（`p.post_id IN (...)`）."""
    if tag.wildcard:
        sub = _TAG_SUBQUERY.format(op="GLOB")
        return QueryFragment(f"p.post_id IN ({sub})", (escape_glob(tag.name),))
    return QueryFragment(f"p.post_id IN ({_TAG_SUBQUERY.format(op='=')})", (tag.name,))


def range_fragment(expr: str, rng: ParsedRange, expr_params: tuple[object, ...] = ()) -> QueryFragment:
    if rng.op is RangeOp.BETWEEN:
        lower, upper = rng.value
        return QueryFragment(f"{expr} BETWEEN ? AND ?", (*expr_params, lower, upper))
    if rng.op is RangeOp.IN:
        placeholders = ", ".join("?" for _ in rng.value)
        return QueryFragment(f"{expr} IN ({placeholders})", (*expr_params, *rng.value))
    return QueryFragment(f"{expr} {_OPS[rng.op]} ?", (*expr_params, rng.value))


def _relation_fragment(predicate: RelationPredicate) -> QueryFragment:
    relation, value = predicate.relation, predicate.value

    if relation in ("uploader", "approver"):
        column = f"p.{relation}_id"
        if value == "any":
            return QueryFragment(f"{column} IS NOT NULL")
        if value == "none":
            return QueryFragment(f"{column} IS NULL")
        return QueryFragment(f"{column} = {_USER_ID_SUBQUERY}", (value,))

    if relation == "fav":
        return QueryFragment(
            "EXISTS (SELECT 1 FROM FAVORITES f JOIN USERS u ON u.user_id = f.user_id "
            "WHERE f.post_id = p.post_id AND u.name = ?)",
            (value,),
        )

    if relation in ("upvote", "downvote"):
        sign = ">" if relation == "upvote" else "<"
        return QueryFragment(
            "EXISTS (SELECT 1 FROM POST_VOTES v JOIN USERS u ON u.user_id = v.user_id "
            f"WHERE v.post_id = p.post_id AND u.name = ? AND v.score {sign} 0)",
            (value,),
        )

    if relation == "pool":
        if value == "any":
            return QueryFragment(_POOL_EXISTS.format(extra=""))
        if value == "none":
            return QueryFragment(f"NOT {_POOL_EXISTS.format(extra='')}")
        return QueryFragment(_POOL_EXISTS.format(extra=" AND po.name GLOB ?"), (escape_glob(str(value)),))

    if relation == "pool_category":
        return QueryFragment(_POOL_EXISTS.format(extra=" AND po.category = ?"), (value,))

    if relation == "parent":
        if value == "any":
            return QueryFragment("p.parent_id IS NOT NULL")
        if value == "none":
            return QueryFragment("p.parent_id IS NULL")
        return QueryFragment("(p.parent_id = ? OR p.post_id = ?)", (value, value))

    if relation == "child":
        exists = "EXISTS (SELECT 1 FROM POSTS c WHERE c.parent_id = p.post_id)"
        return QueryFragment(exists if value == "any" else f"NOT {exists}")

    raise ValueError(f"Unknown relation: {relation}")


def predicate_fragment(predicate: Predicate) -> QueryFragment:
    if isinstance(predicate, RangePredicate):
        if predicate.column == "category_tag_count":
            fragment = range_fragment(_CATEGORY_TAG_COUNT_SQL, predicate.range, (predicate.category,))
        else:
            fragment = range_fragment(COLUMN_SQL[predicate.column], predicate.range)
    elif isinstance(predicate, PatternPredicate):
        column = COLUMN_SQL[predicate.column]
        fragment = QueryFragment(f"LOWER({column}) LIKE ? ESCAPE '\\'", (escape_like(predicate.pattern),))
    elif isinstance(predicate, FlagPredicate):
        unknown = set(predicate.columns) - FLAG_COLUMNS
        if unknown:
            raise ValueError(f"Unknown flag columns: {sorted(unknown)}")
        parts = [QueryFragment(f"p.{c} = ?", (int(predicate.value),)) for c in predicate.columns]
        fragment = and_all(parts) if predicate.combine == "and" else or_any(parts)
    elif isinstance(predicate, RelationPredicate):
        fragment = _relation_fragment(predicate)
    elif isinstance(predicate, NeverPredicate):
        fragment = FALSE
    else:
        raise TypeError(f"Unsupported predicate: {predicate!r}")
    return fragment.negate() if predicate.negated else fragment


def plan_where(plan: QueryPlan) -> QueryFragment:
    """プランの絞り込み条件全体（required ∩ optional − negated ∩ predicates）."""
    parts = [tag_fragment(tag) for tag in plan.required]
    if plan.optional:
        parts.append(or_any(tag_fragment(tag) for tag in plan.optional))
    parts.extend(tag_fragment(tag).negate() for tag in plan.negated)
    parts.extend(predicate_fragment(p) for p in plan.predicates)
    return and_all(parts)


def _from_clause(plan: QueryPlan) -> QueryFragment:
    if plan.order.key == "ordpool":
        # ordpool はプール内の位置で並べる（重複掲載もそのまま返す）
        return QueryFragment(
            "POSTS p JOIN POOL_POSTS opp ON opp.post_id = p.post_id "
            "JOIN POOLS opo ON opo.pool_id = opp.pool_id AND opo.name = ?",
            plan.order.params[:1],
        )
    return QueryFragment("POSTS p")


def order_fragment(order: OrderClause) -> QueryFragment:
    direction = "ASC" if order.direction == "asc" else "DESC"
    if order.key == "random":
        return QueryFragment("RANDOM()")
    if order.key == "custom":
        whens = " ".join("WHEN ? THEN ?" for _ in order.params)
        params: list[object] = []
        for position, post_id in enumerate(order.params):
            params.extend([post_id, position])
        return QueryFragment(f"CASE p.post_id {whens} END ASC", tuple(params))
    if order.key == "ordfav":
        return QueryFragment(
            "(SELECT MAX(f.favorite_id) FROM FAVORITES f JOIN USERS u ON u.user_id = f.user_id "
            "WHERE f.post_id = p.post_id AND u.name = ?) DESC, p.post_id DESC",
            order.params[:1],
        )
    if order.key == "ordpool":
        return QueryFragment("opp.position ASC")
    if order.key == "id":
        return QueryFragment(f"p.post_id {direction}")
    if order.key in ORDER_SQL:
        return QueryFragment(f"{ORDER_SQL[order.key]} {direction}, p.post_id {direction}")
    if order.params:
        # カテゴリ別タグ数（order:gentags など）
        return QueryFragment(f"{_CATEGORY_TAG_COUNT_SQL} {direction}, p.post_id {direction}", order.params[:1])
    raise ValueError(f"Unknown order: {order.key}")


def build_select(plan: QueryPlan, *, limit: int | None = None, offset: int = 0) -> tuple[str, list[object]]:
    """投稿IDを返すSELECT文を組み立てる. plan.limit（`limit:` メタタグ）が優先される."""
    source = _from_clause(plan)
    where = plan_where(plan)
    order = order_fragment(plan.order)
    effective_limit = plan.limit if plan.limit is not None else limit

    sql = f"SELECT p.post_id FROM {source.where} WHERE {where.where} ORDER BY {order.where} LIMIT ? OFFSET ?"
    params = [*source.params, *where.params, *order.params, -1 if effective_limit is None else effective_limit, offset]
    return sql, params


def build_count(plan: QueryPlan) -> tuple[str, list[object]]:
    source = _from_clause(plan)
    where = plan_where(plan)
    return f"SELECT COUNT(*) FROM {source.where} WHERE {where.where}", [*source.params, *where.params]


def select_post_ids(
    store: TagStore,
    plan: QueryPlan,
    *,
    limit: int | None = None,
    offset: int = 0,
    timeout_ms: int | None = None,
) -> list[int]:
    """プランを実行して投稿IDを並び順どおりに返す.

    Raises:
        ExecutionError: SQLite のエラー（タイムアウトによる中断を含む）
    """
    sql, params = build_select(plan, limit=limit, offset=offset)
    return [row[0] for row in store.run_query(sql, params, timeout_ms=timeout_ms)]


def count_posts(store: TagStore, plan: QueryPlan, *, timeout_ms: int | None = None) -> int:
    sql, params = build_count(plan)
    rows = store.run_query(sql, params, timeout_ms=timeout_ms)
    return int(rows[0][0])
