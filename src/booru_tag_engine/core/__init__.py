"""タグエンジンのコア処理群.

- 正規化（入力タグ名 → TAGS.name）
- 設定・タグカテゴリ・呼び出しコンテキスト
- SQLite ストア（スキーマ、トランザクション、post_count 管理）
"""

from .config import EngineConfig, load_config
from .context import SearchContext
from .normalize import normalize_tag_name
from .store import TagStore

__all__ = [
    "EngineConfig",
    "load_config",
    "SearchContext",
    "normalize_tag_name",
    "TagStore",
]
