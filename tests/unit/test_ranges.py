"""ranges.py のユニットテスト."""

from datetime import date

import pytest

from booru_tag_engine.core.exceptions import RangeParseError
from booru_tag_engine.search.ranges import (
    ParsedRange,
    RangeOp,
    parse_date,
    parse_duration,
    parse_filesize,
    parse_filesize_range,
    parse_mpixels_range,
    parse_range,
    parse_ratio,
)


class TestParseRange:
    """parse_range関数のテスト."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("5", ParsedRange(RangeOp.EQ, 5)),
            (">5", ParsedRange(RangeOp.GT, 5)),
            (">=5", ParsedRange(RangeOp.GTE, 5)),
            ("<5", ParsedRange(RangeOp.LT, 5)),
            ("<=5", ParsedRange(RangeOp.LTE, 5)),
            ("5..10", ParsedRange(RangeOp.BETWEEN, (5, 10))),
            ("..10", ParsedRange(RangeOp.LTE, 10)),
            ("5..", ParsedRange(RangeOp.GTE, 5)),
            ("5,6,7", ParsedRange(RangeOp.IN, (5, 6, 7))),
        ],
    )
    def test_forms(self, text: str, expected: ParsedRange) -> None:
        assert parse_range(text) == expected

    def test_reversed_range_is_kept(self) -> None:
        """逆順の範囲はエラーにしない（結果は空集合）."""
        assert parse_range("10..5") == ParsedRange(RangeOp.BETWEEN, (10, 5))

    @pytest.mark.parametrize("text", ["", "abc", "..", ">x", "1..b"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(RangeParseError):
            parse_range(text)

    def test_describe(self) -> None:
        assert ParsedRange(RangeOp.GTE, 3).describe() == ">=3"
        assert ParsedRange(RangeOp.BETWEEN, (1, 2)).describe() == "1..2"
        assert ParsedRange(RangeOp.IN, (1, 2)).describe() == "1,2"


class TestUnitParsers:
    def test_duration(self) -> None:
        assert parse_duration("3d") == 259200
        assert parse_duration("2mo") == 5259492
        assert parse_duration("1y") == 31556952
        assert parse_duration("90") == 90
        assert parse_duration("5min") == 300

    def test_duration_invalid_unit(self) -> None:
        with pytest.raises(ValueError):
            parse_duration("3fortnights")

    def test_filesize(self) -> None:
        assert parse_filesize("1mb") == 1048576
        assert parse_filesize("500kb") == 512000
        assert parse_filesize("1048000b") == 1048000
        assert parse_filesize("2048") == 2048

    def test_ratio(self) -> None:
        assert parse_ratio("16:9") == 1.78
        assert parse_ratio("1.5") == 1.5

    def test_date(self) -> None:
        assert parse_date("2024-01-05") == date(2024, 1, 5)
        assert parse_date("2024/01/05") == date(2024, 1, 5)
        with pytest.raises(ValueError):
            parse_date("05.01.2024")


class TestFudgedRanges:
    """ファイルサイズ・画素数の等値指定は ±5% に広がる."""

    def test_filesize_with_unit_is_fudged(self) -> None:
        parsed = parse_filesize_range("1mb")
        assert parsed.op is RangeOp.BETWEEN
        lower, upper = parsed.value
        assert lower <= 1048576 <= upper
        assert lower == int(1048576 * 0.95)

    def test_filesize_in_bytes_is_exact(self) -> None:
        assert parse_filesize_range("1048000b") == ParsedRange(RangeOp.EQ, 1048000)
        assert parse_filesize_range("2048") == ParsedRange(RangeOp.EQ, 2048)

    def test_filesize_comparison_is_not_fudged(self) -> None:
        assert parse_filesize_range(">1mb") == ParsedRange(RangeOp.GT, 1048576)

    def test_mpixels(self) -> None:
        parsed = parse_mpixels_range("2")
        assert parsed.op is RangeOp.BETWEEN
        assert parsed.value == pytest.approx((1.9, 2.1))
