"""JSON_Adapter for reading post fixtures from JSON files."""

import json
from pathlib import Path

import polars as pl

from .base_adapter import BaseAdapter


class JSON_Adapter(BaseAdapter):
    """Adapter for JSON post fixtures (a list of objects, or a single object).

    Args:
        file_path: Path to JSON file
    """

    def __init__(self, file_path: Path | str) -> None:
        """Initialize adapter.

        Raises:
            FileNotFoundError: JSON file does not exist
        """
        self.file_path = Path(file_path)
        if not self.file_path.exists():
            raise FileNotFoundError(f"JSON file not found: {self.file_path}")

    def read(self) -> pl.DataFrame:
        """Read a JSON file into a Polars DataFrame.

        Raises:
            ValueError: Failed to read JSON, or the 'tag_string' field is missing
        """
        try:
            with open(self.file_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to read JSON: {self.file_path}") from e

        if not isinstance(data, list):
            data = [data]

        df = pl.DataFrame(data, infer_schema_length=None)
        if not self.validate(df):
            raise ValueError(f"JSON must contain objects with a 'tag_string' field: {self.file_path}")
        return self.repair(df)
