"""クエリ文字列の字句解析.

空白（全角スペース・ノーブレークスペースを含む Unicode 空白）で区切り、
`key:"a b c"` 形式のクォートだけを1トークンとして扱います。
"""

from __future__ import annotations

import re

from booru_tag_engine.core.exceptions import LexError

_WHITESPACE = re.compile(r"\s+")
# クォートを開始できるのは `key:` の直後のみ（先頭の極性記号は許可）
_QUOTE_PREFIX = re.compile(r'^[-~]?[^\s:"]+:$')


def tokenize(query: str) -> list[str]:
    """クエリをトークン列に分割する.

    Args:
        query: 生のクエリ文字列

    Returns:
        トークンのリスト（空クエリは空リスト）

    Raises:
        LexError: `key:"...` のクォートが閉じられていない場合

    Examples:
        >>> tokenize('long_hair  source:" a  b " -cat')
        ['long_hair', 'source:a b', '-cat']
    """
    tokens: list[str] = []
    length = len(query)
    i = 0
    while i < length:
        if query[i].isspace():
            i += 1
            continue

        buf: list[str] = []
        while i < length and not query[i].isspace():
            ch = query[i]
            if ch == '"' and _QUOTE_PREFIX.match("".join(buf)):
                end = query.find('"', i + 1)
                if end == -1:
                    raise LexError(query, i)
                buf.append(_WHITESPACE.sub(" ", query[i + 1 : end]).strip())
                i = end + 1
                continue
            buf.append(ch)
            i += 1
        tokens.append("".join(buf))
    return tokens


def normalize_query(query: str) -> str:
    """件数キャッシュのキーに使う正規化済みクエリ（小文字・単一空白区切り）."""
    return " ".join(token.lower() for token in tokenize(query))
