"""タグ名の正規化.

入力されたタグ名を、DB（TAGS.name）で扱う正規化済みタグ名に変換するための関数群です。

設計方針:
    - タグ名は小文字に統一し、空白はアンダースコアへ置換する（`long hair` → `long_hair`）
    - 全角スペースなど Unicode の空白は通常の空白として扱う
    - 先頭の極性記号（`-` / `~`）はタグ名の一部として扱わない
"""

from __future__ import annotations

import re

_WHITESPACE = re.compile(r"\s+")
_LEADING_POLARITY = re.compile(r"^[-~]+")


def normalize_tag_name(name: str) -> str:
    """入力タグ名を TAGS.name に変換する正規化関数.

    Args:
        name: 入力タグ名（例: "Long Hair", "HATSUNE_MIKU"）

    Returns:
        正規化済みタグ名（例: "long_hair", "hatsune_miku"）

    Examples:
        >>> normalize_tag_name("Long Hair")
        'long_hair'
        >>> normalize_tag_name("  Witch ")
        'witch'
        >>> normalize_tag_name("ｃａｔ　ears")
        'ｃａｔ_ears'
    """
    s = name.strip()
    if not s:
        return ""
    s = _WHITESPACE.sub(" ", s)
    return s.lower().replace(" ", "_")


def strip_polarity(name: str) -> str:
    """先頭の `-` / `~` を除去する（`scan_tags` 用）."""
    return _LEADING_POLARITY.sub("", name)
