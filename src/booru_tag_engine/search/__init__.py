"""タグ検索クエリのコンパイルと件数キャッシュ."""

from .compiler import QueryCompiler, tag_match
from .count_cache import CountCache
from .plan import QueryPlan
from .tokenizer import normalize_query, tokenize

__all__ = [
    "QueryCompiler",
    "tag_match",
    "CountCache",
    "QueryPlan",
    "normalize_query",
    "tokenize",
]
