"""CSV読み込みアダプタ（修復付き）.

壊れたCSV（余計なカンマ、欠損列など）も可能な範囲で読み込み、欠損値を既定値で補います。
"""

from pathlib import Path

import polars as pl
from loguru import logger

from .base_adapter import BaseAdapter


class CSV_Adapter(BaseAdapter):
    """投稿フィクスチャ用CSVアダプタ.

    Args:
        file_path: CSVファイルのパス
    """

    def __init__(self, file_path: Path | str) -> None:
        self.file_path = Path(file_path)
        if not self.file_path.exists():
            raise FileNotFoundError(f"CSV file not found: {self.file_path}")

    def read(self) -> pl.DataFrame:
        """CSVファイルを読み込む.

        Raises:
            ValueError: CSV読み込みに失敗した場合、または tag_string 列がない場合
        """
        try:
            df = pl.read_csv(
                self.file_path,
                ignore_errors=True,
                truncate_ragged_lines=True,
                infer_schema_length=0,
            )
        except (pl.exceptions.PolarsError, OSError) as e:
            raise ValueError(f"Failed to read CSV: {self.file_path}") from e

        if not self.validate(df):
            raise ValueError(f"CSV must contain a non-empty 'tag_string' column: {self.file_path}")

        df = self.repair(df)
        logger.debug(f"Read {len(df)} posts from {self.file_path}")
        return df
