"""バルク更新スクリプトの構文解析.

1行1コマンドのテキストを、6種類のコマンド（エイリアス/インプリケーションの作成・削除、
一括置換、カテゴリ変更）に変換します。

書式（大文字小文字を区別しない。括弧内は同義語）:
    create alias A -> B          (aliasing, alias)
    create implication A -> B    (implicating, implicate, imply)
    remove alias A -> B          (unaliasing, unalias)
    remove implication A -> B    (unimplicating, unimplicate, unimply)
    category TAG -> CATEGORY     (change category, change)
    mass update QUERY -> REPL    (updating, update, change)

`change A -> B`（単一トークン同士）はカテゴリ変更として解釈され、
`change a b -> c` のように QUERY が複数語の場合は一括置換になります。
そのため1タグだけの置換（`change kitten -> cat`）は未知のカテゴリとして失敗します。
1タグの置換には `update kitten -> cat` または `mass update kitten -> cat` を使ってください。
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar, Union

from booru_tag_engine.core.exceptions import ParseError
from booru_tag_engine.core.normalize import normalize_tag_name

CREATE_ALIAS_SYNONYMS = ("create alias", "aliasing", "alias")
CREATE_IMPLICATION_SYNONYMS = ("create implication", "implicating", "implicate", "imply")
REMOVE_ALIAS_SYNONYMS = ("remove alias", "unaliasing", "unalias")
REMOVE_IMPLICATION_SYNONYMS = ("remove implication", "unimplicating", "unimplicate", "unimply")
CHANGE_CATEGORY_SYNONYMS = ("change category", "category", "change")
MASS_UPDATE_SYNONYMS = ("mass update", "updating", "update", "change")

_WHITESPACE = re.compile(r"\s+")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class CreateAlias:
    kind: ClassVar[str] = "create_alias"
    antecedent: str
    consequent: str
    line_number: int = 0

    def describe(self) -> str:
        return f"create alias {self.antecedent} -> {self.consequent}"


@dataclass(frozen=True)
class CreateImplication:
    kind: ClassVar[str] = "create_implication"
    antecedent: str
    consequent: str
    line_number: int = 0

    def describe(self) -> str:
        return f"create implication {self.antecedent} -> {self.consequent}"


@dataclass(frozen=True)
class RemoveAlias:
    kind: ClassVar[str] = "remove_alias"
    antecedent: str
    consequent: str
    line_number: int = 0

    def describe(self) -> str:
        return f"remove alias {self.antecedent} -> {self.consequent}"


@dataclass(frozen=True)
class RemoveImplication:
    kind: ClassVar[str] = "remove_implication"
    antecedent: str
    consequent: str
    line_number: int = 0

    def describe(self) -> str:
        return f"remove implication {self.antecedent} -> {self.consequent}"


@dataclass(frozen=True)
class MassUpdate:
    kind: ClassVar[str] = "mass_update"
    query: str
    replacement: str
    line_number: int = 0

    def describe(self) -> str:
        return f"mass update {self.query} -> {self.replacement}"


@dataclass(frozen=True)
class ChangeCategory:
    kind: ClassVar[str] = "change_category"
    tag: str
    category: str
    line_number: int = 0

    def describe(self) -> str:
        return f"category {self.tag} -> {self.category}"


BulkCommand = Union[CreateAlias, CreateImplication, RemoveAlias, RemoveImplication, MassUpdate, ChangeCategory]


@dataclass(frozen=True)
class GrammarRule:
    """1種類のコマンドに対応する構文規則."""

    kind: str
    pattern: re.Pattern[str]
    build: Callable[[re.Match[str], int], BulkCommand]


def _alternatives(synonyms: tuple[str, ...]) -> str:
    return "|".join(re.escape(s) for s in sorted(synonyms, key=len, reverse=True))


def _pair_rule(kind: str, synonyms: tuple[str, ...], factory: Callable[..., BulkCommand]) -> GrammarRule:
    pattern = re.compile(rf"^(?:{_alternatives(synonyms)}) (\S+) -> (\S+)$", re.IGNORECASE)

    def build(m: re.Match[str], line_number: int) -> BulkCommand:
        return factory(normalize_tag_name(m.group(1)), normalize_tag_name(m.group(2)), line_number)

    return GrammarRule(kind, pattern, build)


GRAMMAR: tuple[GrammarRule, ...] = (
    _pair_rule(CreateAlias.kind, CREATE_ALIAS_SYNONYMS, CreateAlias),
    _pair_rule(CreateImplication.kind, CREATE_IMPLICATION_SYNONYMS, CreateImplication),
    _pair_rule(RemoveAlias.kind, REMOVE_ALIAS_SYNONYMS, RemoveAlias),
    _pair_rule(RemoveImplication.kind, REMOVE_IMPLICATION_SYNONYMS, RemoveImplication),
    GrammarRule(
        ChangeCategory.kind,
        re.compile(rf"^(?:{_alternatives(CHANGE_CATEGORY_SYNONYMS)}) (\S+) -> (\S+)$", re.IGNORECASE),
        lambda m, n: ChangeCategory(normalize_tag_name(m.group(1)), m.group(2).lower(), n),
    ),
    GrammarRule(
        MassUpdate.kind,
        re.compile(rf"^(?:{_alternatives(MASS_UPDATE_SYNONYMS)}) (.+?) -> (.*)$", re.IGNORECASE),
        lambda m, n: MassUpdate(m.group(1).strip(), m.group(2).strip(), n),
    ),
)


def parse_line(line: str, line_number: int = 0) -> BulkCommand:
    """1行（空白正規化済み）をコマンドに変換する.

    Raises:
        ParseError: どの規則にも一致しない場合
    """
    for rule in GRAMMAR:
        m = rule.pattern.match(line)
        if m:
            return rule.build(m, line_number)
    raise ParseError(line, line_number)


def parse_script(text: str) -> list[BulkCommand]:
    """スクリプト全体を解析する. 空行は無視し、1行でも解釈できなければ全体を失敗とする.

    Raises:
        ParseError: 解釈できない行がある場合（部分的な結果は返さない）

    Examples:
        >>> [c.kind for c in parse_script("alias kitten -> cat\\nchange cat -> copyright")]
        ['create_alias', 'change_category']
    """
    commands: list[BulkCommand] = []
    for line_number, raw in enumerate(_LINE_BREAK.split(text), start=1):
        line = _WHITESPACE.sub(" ", raw).strip()
        if not line:
            continue
        commands.append(parse_line(line, line_number))
    return commands
