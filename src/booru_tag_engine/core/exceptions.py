"""Tag engine exceptions.

検索クエリのコンパイルとバルク更新処理で使うカスタム例外クラスを定義します。
"""

from __future__ import annotations


class TagEngineError(Exception):
    """タグエンジン共通の基底例外."""


class LexError(TagEngineError):
    """クエリ文字列のクォートが閉じられていない場合の例外.

    Attributes:
        query: 字句解析に失敗したクエリ文字列
        position: 閉じられていないクォートの開始位置
    """

    def __init__(self, query: str, position: int) -> None:
        self.query = query
        self.position = position
        super().__init__(f"Unterminated quote at position {position}: {query}")


class RangeParseError(TagEngineError):
    """数値・期間・サイズ等の範囲指定が不正な場合の例外.

    Attributes:
        value: 解析に失敗した入力値
        kind: 期待していた値の種類（integer / duration / filesize など）
    """

    def __init__(self, value: str, kind: str) -> None:
        self.value = value
        self.kind = kind
        super().__init__(f"Invalid {kind} range: {value!r}")


class SearchError(TagEngineError):
    """検索ポリシー違反（タグ数上限超過など）の例外."""


class ParseError(TagEngineError):
    """バルク更新スクリプトに解釈できない行が含まれる場合の例外.

    Attributes:
        line: 解釈できなかった行（空白正規化済み）
        line_number: 1始まりの行番号（元テキスト基準）
    """

    def __init__(self, line: str, line_number: int | None = None) -> None:
        self.line = line
        self.line_number = line_number
        super().__init__(f"Unparseable line: {line}")


class ValidationError(TagEngineError):
    """エイリアス/インプリケーション等のモデル検証に失敗した場合の例外.

    Attributes:
        messages: 検証エラーメッセージのリスト
        command: 対象コマンドの表記（例: "create alias a -> b"）
    """

    def __init__(self, messages: list[str], command: str | None = None) -> None:
        self.messages = list(messages)
        self.command = command
        message = f"Error: {'; '.join(self.messages)}"
        if command:
            message += f" ({command})"
        super().__init__(message)


class NotFoundError(TagEngineError):
    """削除対象のエイリアス/インプリケーション、またはタグが見つからない場合の例外."""


class ExecutionError(TagEngineError):
    """ストア操作（SQLite）の失敗をラップする例外.

    Attributes:
        command: 実行中だったコマンドの表記（不明な場合は None）
    """

    def __init__(self, message: str, command: str | None = None) -> None:
        self.command = command
        if command:
            message = f"{message} ({command})"
        super().__init__(message)
