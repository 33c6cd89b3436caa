"""投稿フィクスチャ読み込み用アダプタ（基底クラス）.

CSV/JSON などの投稿データを共通インターフェースで Polars DataFrame に読み込むための
抽象基底クラスを定義します。
"""

from abc import ABC, abstractmethod

import polars as pl

# 標準列と既定値（tag_string のみ必須）
STANDARD_COLUMNS: dict[str, tuple[pl.DataType, object]] = {
    "tag_string": (pl.String(), None),
    "rating": (pl.String(), "q"),
    "source": (pl.String(), ""),
    "md5": (pl.String(), None),
    "file_ext": (pl.String(), "jpg"),
    "file_size": (pl.Int64(), 0),
    "image_width": (pl.Int64(), 0),
    "image_height": (pl.Int64(), 0),
    "score": (pl.Int64(), 0),
    "parent_id": (pl.Int64(), None),
    "uploader": (pl.String(), None),
    "approver": (pl.String(), None),
    "is_pending": (pl.Boolean(), False),
    "is_flagged": (pl.Boolean(), False),
    "is_deleted": (pl.Boolean(), False),
    "is_banned": (pl.Boolean(), False),
    "created_at": (pl.String(), None),
}

REQUIRED_COLUMNS = ("tag_string",)


class BaseAdapter(ABC):
    """投稿フィクスチャアダプタの基底クラス.

    全てのアダプタはこのクラスを継承し、read()/validate()/repair() を実装します。
    """

    @abstractmethod
    def read(self) -> pl.DataFrame:
        """データソースを読み込み、STANDARD_COLUMNS 準拠の DataFrame に変換する.

        Raises:
            FileNotFoundError: ファイルが存在しない場合
            ValueError: データ形式が不正な場合
        """
        ...

    def validate(self, df: pl.DataFrame) -> bool:
        """必須列（tag_string）があり、空でないことを検証する."""
        if df.is_empty():
            return False
        return all(col in df.columns for col in REQUIRED_COLUMNS)

    def repair(self, df: pl.DataFrame) -> pl.DataFrame:
        """欠損列を既定値で補い、標準列の型に揃える. 未知の列は捨てる."""
        exprs = []
        for name, (dtype, default) in STANDARD_COLUMNS.items():
            if name in df.columns:
                if isinstance(dtype, pl.Boolean) and df.schema[name] == pl.String:
                    col = pl.col(name).str.strip_chars().str.to_lowercase().is_in(["1", "true", "t", "yes"])
                else:
                    col = pl.col(name).cast(dtype, strict=False)
                if default is not None:
                    col = col.fill_null(default)
                exprs.append(col.alias(name))
            else:
                exprs.append(pl.lit(default, dtype=dtype).alias(name))
        return df.select(exprs).with_columns(pl.col("rating").str.slice(0, 1).str.to_lowercase())
