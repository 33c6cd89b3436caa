"""bulk/commands.py のユニットテスト."""

import pytest

from booru_tag_engine.bulk.commands import (
    ChangeCategory,
    CreateAlias,
    CreateImplication,
    MassUpdate,
    RemoveAlias,
    RemoveImplication,
    parse_line,
    parse_script,
)
from booru_tag_engine.core.exceptions import ParseError


class TestParseLine:
    """1行の解析."""

    @pytest.mark.parametrize(
        ("line", "expected"),
        [
            ("create alias kitten -> cat", CreateAlias("kitten", "cat")),
            ("aliasing kitten -> cat", CreateAlias("kitten", "cat")),
            ("ALIAS Kitten -> Cat", CreateAlias("kitten", "cat")),
            ("create implication cat -> animal", CreateImplication("cat", "animal")),
            ("imply cat -> animal", CreateImplication("cat", "animal")),
            ("implicating cat -> animal", CreateImplication("cat", "animal")),
            ("remove alias kitten -> cat", RemoveAlias("kitten", "cat")),
            ("unalias kitten -> cat", RemoveAlias("kitten", "cat")),
            ("remove implication cat -> animal", RemoveImplication("cat", "animal")),
            ("unimply cat -> animal", RemoveImplication("cat", "animal")),
            ("category cat -> Copyright", ChangeCategory("cat", "copyright")),
            ("change category cat -> artist", ChangeCategory("cat", "artist")),
            ("change cat -> copyright", ChangeCategory("cat", "copyright")),
            ("mass update cat dog -> animal", MassUpdate("cat dog", "animal")),
            ("update cat -> dog -cat", MassUpdate("cat", "dog -cat")),
            ("change cat ears -> dog", MassUpdate("cat ears", "dog")),
            # 1タグの置換は update で書く（change は単一トークン同士ならカテゴリ変更）
            ("change kitten -> cat", ChangeCategory("kitten", "cat")),
            ("update kitten -> cat", MassUpdate("kitten", "cat")),
        ],
    )
    def test_grammar(self, line: str, expected: object) -> None:
        assert parse_line(line) == expected

    def test_mass_update_keeps_query_text(self) -> None:
        command = parse_line("mass update Cat score:>5 -> Dog")
        assert command == MassUpdate("Cat score:>5", "Dog")

    @pytest.mark.parametrize(
        "line",
        ["alias kitten cat", "create alias a b -> c", "frobnicate a -> b", "alias a ->", "hello"],
    )
    def test_unparseable(self, line: str) -> None:
        with pytest.raises(ParseError):
            parse_line(line)

    def test_describe(self) -> None:
        assert CreateAlias("kitten", "cat").describe() == "create alias kitten -> cat"
        assert ChangeCategory("cat", "copyright").describe() == "category cat -> copyright"


class TestParseScript:
    def test_order_and_line_numbers(self) -> None:
        commands = parse_script("alias kitten -> cat\n\n  change   cat ->  copyright  \r\n")
        assert commands == [CreateAlias("kitten", "cat", 1), ChangeCategory("cat", "copyright", 3)]

    def test_line_breaks(self) -> None:
        commands = parse_script("alias a -> b\rimply c -> d\r\nunalias e -> f")
        assert [c.kind for c in commands] == ["create_alias", "create_implication", "remove_alias"]

    def test_blank_script(self) -> None:
        assert parse_script("  \n\n") == []

    def test_failure_is_total(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            parse_script("alias a -> b\nnonsense here\nalias c -> d")
        assert exc_info.value.line_number == 2
        assert exc_info.value.line == "nonsense here"
