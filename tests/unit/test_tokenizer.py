"""tokenizer.py のユニットテスト."""

import pytest

from booru_tag_engine.core.exceptions import LexError
from booru_tag_engine.search.tokenizer import normalize_query, tokenize


class TestTokenize:
    """tokenize関数のテスト."""

    def test_split_on_whitespace(self) -> None:
        assert tokenize("aaa  bbb\tccc") == ["aaa", "bbb", "ccc"]

    def test_empty_query(self) -> None:
        assert tokenize("") == []
        assert tokenize("   ") == []

    def test_unicode_whitespace(self) -> None:
        """全角スペース・ノーブレークスペースも区切り文字."""
        assert tokenize("aaa　bbb ccc") == ["aaa", "bbb", "ccc"]

    def test_quoted_metatag_value(self) -> None:
        """クォート内の空白はまとめられ、前後は取り除かれる."""
        assert tokenize('source:" a   b " cat') == ["source:a b", "cat"]

    def test_quote_with_polarity(self) -> None:
        assert tokenize('-source:"foo bar"') == ["-source:foo bar"]

    def test_quote_inside_tag_is_literal(self) -> None:
        """`key:` の直後以外のクォートは通常の文字."""
        assert tokenize('foo"bar baz') == ['foo"bar', "baz"]

    def test_unterminated_quote(self) -> None:
        with pytest.raises(LexError) as exc_info:
            tokenize('source:"abc def')
        assert exc_info.value.position == 7


class TestNormalizeQuery:
    def test_lowercase_and_collapse(self) -> None:
        assert normalize_query("  Aaa   BBB  ") == "aaa bbb"

    def test_blank(self) -> None:
        assert normalize_query("") == ""
