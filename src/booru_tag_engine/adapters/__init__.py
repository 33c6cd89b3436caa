"""投稿フィクスチャのデータソースアダプタ群."""

from .base_adapter import STANDARD_COLUMNS, BaseAdapter
from .csv_adapter import CSV_Adapter
from .json_adapter import JSON_Adapter

__all__ = [
    "BaseAdapter",
    "CSV_Adapter",
    "JSON_Adapter",
    "STANDARD_COLUMNS",
]
