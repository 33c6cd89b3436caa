"""Unit tests for CSV_Adapter / JSON_Adapter."""

from __future__ import annotations

import json
from pathlib import Path

import polars as pl
import pytest

from booru_tag_engine.adapters import CSV_Adapter, JSON_Adapter, STANDARD_COLUMNS


class TestCSVAdapter:
    def test_init_with_nonexistent_file(self) -> None:
        with pytest.raises(FileNotFoundError):
            CSV_Adapter("/nonexistent/path/test.csv")

    def test_read_and_repair(self, tmp_path: Path) -> None:
        path = tmp_path / "posts.csv"
        path.write_text(
            "tag_string,rating,file_size,is_deleted,uploader,extra\n"
            "cat dog,Safe,2048,true,alice,x\n"
            "bird,,,,,\n",
            encoding="utf-8",
        )
        df = CSV_Adapter(path).read()

        assert df.columns == list(STANDARD_COLUMNS)
        assert df["rating"].to_list() == ["s", "q"]
        assert df["file_size"].to_list() == [2048, 0]
        assert df["is_deleted"].to_list() == [True, False]
        assert df["uploader"].to_list() == ["alice", None]
        assert df.schema["score"] == pl.Int64

    def test_missing_tag_string(self, tmp_path: Path) -> None:
        path = tmp_path / "posts.csv"
        path.write_text("rating\ns\n", encoding="utf-8")
        with pytest.raises(ValueError, match="tag_string"):
            CSV_Adapter(path).read()


class TestJSONAdapter:
    def test_init_with_nonexistent_file(self) -> None:
        with pytest.raises(FileNotFoundError):
            JSON_Adapter("/nonexistent/path/test.json")

    def test_read_list(self, tmp_path: Path) -> None:
        path = tmp_path / "posts.json"
        path.write_text(
            json.dumps(
                [
                    {"tag_string": "cat", "rating": "e", "score": 5, "is_pending": True},
                    {"tag_string": "dog", "created_at": "2024-01-01 00:00:00"},
                ]
            ),
            encoding="utf-8",
        )
        df = JSON_Adapter(path).read()

        assert len(df) == 2
        assert df["rating"].to_list() == ["e", "q"]
        assert df["score"].to_list() == [5, 0]
        assert df["is_pending"].to_list() == [True, False]
        assert df["created_at"].to_list() == [None, "2024-01-01 00:00:00"]

    def test_single_object(self, tmp_path: Path) -> None:
        path = tmp_path / "post.json"
        path.write_text(json.dumps({"tag_string": "cat"}), encoding="utf-8")
        assert len(JSON_Adapter(path).read()) == 1

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{oops", encoding="utf-8")
        with pytest.raises(ValueError, match="Failed to read JSON"):
            JSON_Adapter(path).read()

    def test_missing_tag_string(self, tmp_path: Path) -> None:
        path = tmp_path / "posts.json"
        path.write_text(json.dumps([{"rating": "s"}]), encoding="utf-8")
        with pytest.raises(ValueError, match="tag_string"):
            JSON_Adapter(path).read()
