"""検索クエリのコンパイル.

クエリ文字列を字句解析・分類し、エイリアス解決・タグ数上限チェック・既定フィルタ
（safe mode / 削除済み非表示）を適用して QueryPlan を組み立てます。

使用例:
    >>> compiler = QueryCompiler(EngineConfig(), AliasResolver(store))
    >>> plan = compiler.compile("aaa bbb -ccc order:score", SearchContext())
    >>> plan.describe()["order"]
    'score-desc'
"""

from __future__ import annotations

from dataclasses import replace

from loguru import logger

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.exceptions import SearchError
from booru_tag_engine.core.store import TagStore

from .aliases import AliasResolver
from .metatags import STATUS_SHOWING_DELETED, MetatagRegistry, build_metatag_registry
from .plan import (
    DEFAULT_ORDER,
    FlagPredicate,
    OrderClause,
    Predicate,
    QueryPlan,
    RangePredicate,
    TagFilter,
)
from .ranges import ParsedRange, RangeOp
from .sql import select_post_ids
from .terms import Polarity, SearchTerm, TermKind, classify
from .tokenizer import tokenize

# `order:<key>`（`_asc` / `_desc` 付き、素のままは降順）
ORDER_KEYS = frozenset({"score", "favcount", "change", "mpixels", "filesize", "tagcount"})


def parse_order(value: str, config: EngineConfig) -> OrderClause | None:
    """`order:` の値を OrderClause に変換する. 未知の値は None."""
    value = value.lower()
    if value in ("id", "id_asc"):
        return OrderClause("id", "asc")
    if value == "id_desc":
        return OrderClause("id", "desc")
    if value == "portrait":
        return OrderClause("ratio", "asc")
    if value == "landscape":
        return OrderClause("ratio", "desc")
    if value in ("random", "custom"):
        return OrderClause(value, "asc")

    key, direction = value, "desc"
    for suffix in ("_asc", "_desc"):
        if value.endswith(suffix):
            key, direction = value[: -len(suffix)], suffix[1:]
            break

    if key in ORDER_KEYS:
        return OrderClause(key, direction)
    for category in config.categories:
        if key == category.count_metatag:
            return OrderClause(key, direction, (category.code,))
    return None


class QueryCompiler:
    """クエリ文字列 → QueryPlan.

    呼び出しごとに状態を持たないため、複数スレッドから同時に使ってよい
    （共有するのはエイリアス解決器の読み取りキャッシュのみ）。
    """

    def __init__(self, config: EngineConfig, resolver: AliasResolver | None = None) -> None:
        self.config = config
        self.resolver = resolver
        self.registry: MetatagRegistry = build_metatag_registry(config.categories)

    @classmethod
    def for_store(cls, store: TagStore, config: EngineConfig) -> QueryCompiler:
        return cls(config, AliasResolver(store))

    def classify(self, query: str) -> list[SearchTerm]:
        """クエリを分類し、重複する語を除く（最初の出現を残す）."""
        seen: set[tuple[TermKind, Polarity, str, str | None]] = set()
        terms: list[SearchTerm] = []
        for term in classify(tokenize(query), self.registry.names):
            key = (term.kind, term.polarity, term.name, term.value)
            if key in seen:
                continue
            seen.add(key)
            terms.append(term)
        return terms

    def check_tag_limit(self, terms: list[SearchTerm]) -> None:
        """タグ数上限を検査する.

        Raises:
            SearchError: 上限対象の語が tag_query_limit を超える場合
        """
        counted = [
            term
            for term in terms
            if (term.is_tag or (self.config.count_metatags_against_limit and term.kind is TermKind.METATAG))
            and not self.config.is_unlimited_tag(term.raw)
        ]
        if len(counted) > self.config.tag_query_limit:
            raise SearchError(f"You cannot search for more than {self.config.tag_query_limit} tags at a time")

    def compile(self, query: str, ctx: SearchContext) -> QueryPlan:
        """クエリをコンパイルする.

        Raises:
            LexError: クォートが閉じられていない場合
            RangeParseError: メタタグの値が不正な場合
            SearchError: タグ数上限を超えた場合
        """
        terms = self.classify(query)
        self.check_tag_limit(terms)

        groups: dict[Polarity, dict[TagFilter, None]] = {p: {} for p in Polarity}
        predicates: list[Predicate] = []
        order: OrderClause | None = None
        limit: int | None = None
        shows_deleted = False

        for term in terms:
            if term.kind is TermKind.ORDER:
                parsed = parse_order(term.value or "", self.config)
                if parsed is None:
                    logger.debug(f"Ignoring unknown order: {term.raw}")
                order = parsed
            elif term.kind is TermKind.METATAG:
                result = self.registry.evaluate(term.name, term.value or "", ctx)
                negated = term.polarity is Polarity.NEGATED
                if result.predicate is not None:
                    predicate = result.predicate
                    if negated:
                        predicate = replace(predicate, negated=True)
                    predicates.append(predicate)
                if result.order is not None and not negated:
                    order = result.order
                if result.limit is not None:
                    limit = result.limit
                if term.name == "status" and (term.value or "").lower() in STATUS_SHOWING_DELETED:
                    shows_deleted = True
            elif term.kind is TermKind.WILDCARD:
                groups[term.polarity].setdefault(TagFilter(term.name, wildcard=True), None)
            else:
                name = self.resolver.resolve(term.name) if self.resolver else term.name
                groups[term.polarity].setdefault(TagFilter(name), None)

        required = tuple(groups[Polarity.REQUIRED])
        optional = tuple(f for f in groups[Polarity.OPTIONAL] if f not in groups[Polarity.REQUIRED])
        negated_tags = tuple(groups[Polarity.NEGATED])

        if ctx.safe_mode:
            predicates.append(RangePredicate("rating", ParsedRange(RangeOp.EQ, "s")))
        if ctx.hide_deleted and not shows_deleted:
            predicates.append(FlagPredicate(("is_deleted",), value=False))

        return QueryPlan(
            required=required,
            negated=negated_tags,
            optional=optional,
            predicates=tuple(predicates),
            order=self._finalize_order(order, predicates),
            limit=limit,
            query=query,
        )

    def _finalize_order(self, order: OrderClause | None, predicates: list[Predicate]) -> OrderClause:
        if order is None:
            return DEFAULT_ORDER
        if order.key != "custom":
            return order
        # order:custom は id:a,b,c の並びを使う
        for predicate in reversed(predicates):
            if (
                isinstance(predicate, RangePredicate)
                and predicate.column == "id"
                and predicate.range.op is RangeOp.IN
                and not predicate.negated
            ):
                return OrderClause("custom", "asc", tuple(predicate.range.value))
        return DEFAULT_ORDER


def tag_match(
    store: TagStore,
    query: str,
    ctx: SearchContext,
    config: EngineConfig | None = None,
    *,
    limit: int | None = None,
) -> list[int]:
    """クエリに一致する投稿IDを並び順どおりに返す."""
    config = config or EngineConfig()
    plan = QueryCompiler.for_store(store, config).compile(query, ctx)
    return select_post_ids(store, plan, limit=limit, timeout_ms=config.statement_timeout_ms)
