"""範囲指定の解析.

`5`, `>5`, `>=5`, `<5`, `<=5`, `5..10`, `..10`, `5..`, `5,6,7` の各形式を、
値の型（整数・実数・期間・ファイルサイズ・比率・日付）ごとの変換関数と組み合わせて
ParsedRange に変換します。

ファイルサイズの扱い:
    - `kb` / `mb` 単位の等値指定は ±5% の範囲に広げる（`filesize:1mb` は 1,048,576 バイトに一致）
    - バイト単位（`...b` または単位なし）は完全一致（`filesize:1048000b` は一致しない）
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from booru_tag_engine.core.exceptions import RangeParseError


class RangeOp(str, Enum):
    """比較演算子."""

    EQ = "eq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"
    BETWEEN = "between"  # value = (lower, upper)
    IN = "in"  # value = tuple of values


@dataclass(frozen=True)
class ParsedRange:
    op: RangeOp
    value: Any

    def describe(self) -> str:
        if self.op is RangeOp.BETWEEN:
            return f"{self.value[0]}..{self.value[1]}"
        if self.op is RangeOp.IN:
            return ",".join(str(v) for v in self.value)
        symbols = {RangeOp.EQ: "", RangeOp.LT: "<", RangeOp.LTE: "<=", RangeOp.GT: ">", RangeOp.GTE: ">="}
        return f"{symbols[self.op]}{self.value}"


SECONDS_PER_UNIT: dict[str, int] = {
    "s": 1,
    "mi": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
    "mo": 2629746,
    "y": 31556952,
}

_DURATION_UNIT_ALIASES: dict[str, str] = {
    "": "s",
    "s": "s",
    "sec": "s",
    "secs": "s",
    "second": "s",
    "seconds": "s",
    "mi": "mi",
    "min": "mi",
    "mins": "mi",
    "minute": "mi",
    "minutes": "mi",
    "h": "h",
    "hour": "h",
    "hours": "h",
    "d": "d",
    "day": "d",
    "days": "d",
    "w": "w",
    "week": "w",
    "weeks": "w",
    "mo": "mo",
    "month": "mo",
    "months": "mo",
    "y": "y",
    "year": "y",
    "years": "y",
}

BYTES_PER_UNIT: dict[str, int] = {"b": 1, "k": 1024, "kb": 1024, "m": 1024 * 1024, "mb": 1024 * 1024}

_NUMBER_WITH_UNIT = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]*)$")
_FUZZY_FILESIZE_UNIT = re.compile(r"\d\s*[km]b?$")
_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d")


def parse_integer(value: str) -> int:
    return int(value)


def parse_float(value: str) -> float:
    return float(value)


def parse_duration(value: str) -> int:
    """期間を秒数に変換する（例: `3d` → 259200, `2mo` → 5259492, 単位なしは秒）."""
    m = _NUMBER_WITH_UNIT.match(value.strip().lower())
    if not m or m.group(2) not in _DURATION_UNIT_ALIASES:
        raise ValueError(f"Invalid duration: {value}")
    unit = _DURATION_UNIT_ALIASES[m.group(2)]
    return int(float(m.group(1)) * SECONDS_PER_UNIT[unit])


def parse_filesize(value: str) -> int:
    """ファイルサイズをバイト数に変換する（例: `1mb` → 1048576, `500kb` → 512000）."""
    m = _NUMBER_WITH_UNIT.match(value.strip().lower())
    if not m:
        raise ValueError(f"Invalid filesize: {value}")
    unit = m.group(2) or "b"
    if unit not in BYTES_PER_UNIT:
        raise ValueError(f"Invalid filesize unit: {value}")
    return int(float(m.group(1)) * BYTES_PER_UNIT[unit])


def parse_ratio(value: str) -> float:
    """縦横比を小数2桁に丸める（`16:9` → 1.78, `1.5` → 1.5）."""
    value = value.strip()
    if ":" in value:
        left, right = value.split(":", 1)
        return round(float(left) / float(right), 2)
    return round(float(value), 2)


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value}")


def parse_range(value: str, cast: Callable[[str], Any] = parse_integer, kind: str = "integer") -> ParsedRange:
    """範囲指定文字列を解析する.

    逆順の範囲（`10..5`）はエラーにせずそのまま返す（結果は空集合になる）。

    Raises:
        RangeParseError: 形式が不正、または値を変換できない場合
    """
    text = value.strip()
    if not text:
        raise RangeParseError(value, kind)

    try:
        if ".." in text:
            lower, upper = (part.strip() for part in text.split("..", 1))
            if not lower and not upper:
                raise ValueError("empty range")
            if not lower:
                return ParsedRange(RangeOp.LTE, cast(upper))
            if not upper:
                return ParsedRange(RangeOp.GTE, cast(lower))
            return ParsedRange(RangeOp.BETWEEN, (cast(lower), cast(upper)))
        if text.startswith(">="):
            return ParsedRange(RangeOp.GTE, cast(text[2:]))
        if text.startswith("<="):
            return ParsedRange(RangeOp.LTE, cast(text[2:]))
        if text.startswith(">"):
            return ParsedRange(RangeOp.GT, cast(text[1:]))
        if text.startswith("<"):
            return ParsedRange(RangeOp.LT, cast(text[1:]))
        if "," in text:
            items = [item.strip() for item in text.split(",") if item.strip()]
            if not items:
                raise ValueError("empty set")
            return ParsedRange(RangeOp.IN, tuple(cast(item) for item in items))
        return ParsedRange(RangeOp.EQ, cast(text))
    except (ValueError, ArithmeticError) as e:
        raise RangeParseError(value, kind) from e


def fudge(parsed: ParsedRange, tolerance: float = 0.05, cast: Callable[[float], Any] = float) -> ParsedRange:
    """等値指定を ±tolerance の範囲に広げる（等値以外はそのまま）."""
    if parsed.op is not RangeOp.EQ:
        return parsed
    value = parsed.value
    return ParsedRange(RangeOp.BETWEEN, (cast(value * (1 - tolerance)), cast(value * (1 + tolerance))))


def parse_filesize_range(value: str) -> ParsedRange:
    """ファイルサイズの範囲指定. `kb` / `mb` 単位の等値指定のみ ±5% に広げる."""
    parsed = parse_range(value, parse_filesize, "filesize")
    if parsed.op is RangeOp.EQ and _FUZZY_FILESIZE_UNIT.search(value.strip().lower()):
        return fudge(parsed, cast=int)
    return parsed


def parse_mpixels_range(value: str) -> ParsedRange:
    return fudge(parse_range(value, parse_float, "mpixels"))
