"""トークンの分類.

各トークンを極性（必須 / 除外 / 任意）と種類（タグ / ワイルドカード / メタタグ / 並び順）に
分類し、SearchTerm に変換します。
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from enum import Enum

from booru_tag_engine.core.normalize import normalize_tag_name, strip_polarity

from .tokenizer import tokenize


class Polarity(str, Enum):
    REQUIRED = "required"
    NEGATED = "negated"
    OPTIONAL = "optional"


class TermKind(str, Enum):
    TAG = "tag"
    WILDCARD = "wildcard"
    METATAG = "metatag"
    ORDER = "order"


@dataclass(frozen=True)
class SearchTerm:
    """分類済みの検索語.

    Attributes:
        kind: 種類
        polarity: 極性（order では常に REQUIRED）
        name: タグ名（正規化済み）/ ワイルドカードパターン / メタタグ名（小文字）/ "order"
        value: メタタグと並び順の値（タグでは None）
        raw: 元のトークン
    """

    kind: TermKind
    polarity: Polarity
    name: str
    value: str | None = None
    raw: str = ""

    @property
    def is_tag(self) -> bool:
        return self.kind in (TermKind.TAG, TermKind.WILDCARD)


def split_polarity(token: str) -> tuple[Polarity, str]:
    """先頭の `-` / `~` を1文字だけ取り除く. 記号のみのトークンはタグとして扱う."""
    if len(token) > 1 and token[0] == "-":
        return Polarity.NEGATED, token[1:]
    if len(token) > 1 and token[0] == "~":
        return Polarity.OPTIONAL, token[1:]
    return Polarity.REQUIRED, token


def classify_token(token: str, metatags: Collection[str]) -> SearchTerm:
    """1トークンを SearchTerm に分類する.

    Args:
        token: tokenize() が返したトークン
        metatags: 有効なメタタグ名（小文字）の集合
    """
    polarity, body = split_polarity(token)

    key, sep, value = body.partition(":")
    if sep and value and key:
        key_lower = key.lower()
        if key_lower == "order":
            return SearchTerm(TermKind.ORDER, Polarity.REQUIRED, "order", value.lower(), token)
        if key_lower in metatags:
            # メタタグは任意（~）の和集合に参加しない
            if polarity is Polarity.OPTIONAL:
                polarity = Polarity.REQUIRED
            return SearchTerm(TermKind.METATAG, polarity, key_lower, value, token)

    name = normalize_tag_name(body)
    if "*" in name:
        return SearchTerm(TermKind.WILDCARD, polarity, name, None, token)
    return SearchTerm(TermKind.TAG, polarity, name, None, token)


def classify(tokens: Iterable[str], metatags: Collection[str]) -> list[SearchTerm]:
    return [classify_token(token, metatags) for token in tokens]


def scan_tags(query: str, metatags: Collection[str]) -> list[str]:
    """クエリに含まれるタグ名（極性記号なし、重複なし）を出現順に返す.

    メタタグと order は含まない。
    """
    seen: dict[str, None] = {}
    for term in classify(tokenize(query), metatags):
        if term.kind is TermKind.TAG:
            seen.setdefault(strip_polarity(term.name), None)
    return list(seen)
