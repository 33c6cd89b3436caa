"""バルク更新スクリプト（エイリアス/インプリケーション/カテゴリ変更/一括置換）."""

from .commands import parse_script
from .executor import BulkFailure, BulkSuccess, BulkUpdateImporter
from .tasks import InMemoryTaskSink, MassUpdateJob, MassUpdateWorker

__all__ = [
    "parse_script",
    "BulkUpdateImporter",
    "BulkSuccess",
    "BulkFailure",
    "InMemoryTaskSink",
    "MassUpdateJob",
    "MassUpdateWorker",
]
