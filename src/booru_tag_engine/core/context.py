"""呼び出しコンテキスト.

検索コンパイラとバルク更新処理は暗黙のグローバル（現在ユーザー等）を参照せず、
このコンテキストを明示的に受け取ります。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime


@dataclass(frozen=True)
class SearchContext:
    """現在の操作主体と検索フラグ.

    Attributes:
        user_id: 操作ユーザーID（匿名は None）
        user_name: 操作ユーザー名（`fav:self` などの解決に使う）
        is_moderator: 他ユーザーの投票（upvote/downvote）を検索できるか
        safe_mode: True の場合 `rating:s` を暗黙に追加する
        hide_deleted: True の場合、削除済み投稿を既定で除外する
        now: 基準時刻（None の場合は現在時刻、テスト用に固定可能）
    """

    user_id: int | None = None
    user_name: str | None = None
    is_moderator: bool = False
    safe_mode: bool = False
    hide_deleted: bool = False
    now: datetime | None = None

    def current_time(self) -> datetime:
        return self.now if self.now is not None else datetime.now(UTC)

    def is_self(self, user_name: str) -> bool:
        return self.user_name is not None and self.user_name.lower() == user_name.lower()

    def without_default_filters(self) -> SearchContext:
        """safe_mode / hide_deleted を外したコンテキスト."""
        return replace(self, safe_mode=False, hide_deleted=False)


ANONYMOUS = SearchContext()
