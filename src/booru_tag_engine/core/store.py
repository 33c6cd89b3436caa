"""投稿/タグストア（SQLite）.

検索コンパイラとバルク更新処理から見た「ストア」の実装です。

- タグ名による投稿集合の参照、範囲検索・並び替え（SQLは search.sql 側で組み立てる）
- 明示的なトランザクション（BEGIN IMMEDIATE / COMMIT / ROLLBACK）と after_commit フック
- 投稿のタグ付け変更のたびに TAGS.post_count（非正規化キャッシュ）を更新
- 文単位のタイムアウト（progress handler で中断）
"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from loguru import logger

from .categories import DEFAULT_CATEGORIES, TagCategories
from .database import apply_connection_pragmas, build_indexes, create_database, create_schema
from .exceptions import ExecutionError
from .master_data import initialize_master_data
from .normalize import normalize_tag_name

RelationshipKind = Literal["alias", "implication"]

_RELATIONSHIP_TABLES: dict[str, tuple[str, str]] = {
    "alias": ("TAG_ALIASES", "alias_id"),
    "implication": ("TAG_IMPLICATIONS", "implication_id"),
}

# progress handler を呼び出す間隔（SQLite VM 命令数）
_PROGRESS_INTERVAL = 1000


def to_db_timestamp(value: datetime | str) -> str:
    """datetime を DB 保存形式（UTC, `YYYY-MM-DD HH:MM:SS`）に変換する."""
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class TagRecord:
    tag_id: int
    name: str
    category: int
    post_count: int


@dataclass(frozen=True)
class RelationshipRecord:
    """TAG_ALIASES / TAG_IMPLICATIONS の1行."""

    record_id: int
    antecedent_name: str
    consequent_name: str
    status: str
    forum_topic_id: int | None
    creator_id: int | None
    approver_id: int | None


class Transaction:
    """明示的なトランザクション.

    commit() / rollback() は呼び出し側が選ぶ。with 文で使う場合は、例外なしで抜けると commit、
    例外発生時は rollback する。after_commit() に登録した処理は commit 成功後にのみ実行される。
    """

    def __init__(self, store: TagStore) -> None:
        self._store = store
        self._callbacks: list[Callable[[], None]] = []
        self.active = False

    def begin(self) -> Transaction:
        """BEGIN IMMEDIATE を発行する.

        Raises:
            ExecutionError: 書き込みロックを取得できない場合（他のバッチが実行中など）
        """
        try:
            self._store.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise ExecutionError(f"Could not begin transaction: {e}") from e
        self.active = True
        self._store._transaction = self
        return self

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def commit(self) -> None:
        """COMMIT する. 失敗した場合はロールバックしてから ExecutionError を送出する.

        Raises:
            ExecutionError: COMMIT に失敗した場合（after_commit の処理は実行されない）
        """
        if not self.active:
            raise RuntimeError("Transaction is not active")
        try:
            self._store.conn.execute("COMMIT")
        except sqlite3.Error as e:
            logger.error(f"Commit failed, rolling back: {e}")
            self.rollback()
            raise ExecutionError(f"Could not commit transaction: {e}") from e
        self._finish()
        for callback in self._callbacks:
            callback()

    def rollback(self) -> None:
        if not self.active:
            return
        try:
            # COMMIT 失敗時は SQLite 側で既に終了していることがある
            if self._store.conn.in_transaction:
                self._store.conn.execute("ROLLBACK")
        finally:
            self._finish()
        self._store.alias_generation += 1
        logger.info("Transaction rolled back")

    def _finish(self) -> None:
        self.active = False
        self._store._transaction = None

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.rollback()
        elif self.active:
            self.commit()


class TagStore:
    """SQLite 上の投稿/タグストア.

    1接続を保持するため、スレッド/プロセスごとに別インスタンスを開くこと。
    """

    def __init__(self, conn: sqlite3.Connection, categories: TagCategories = DEFAULT_CATEGORIES) -> None:
        self.conn = conn
        self.categories = categories
        # エイリアス変更ごとに増える世代番号（AliasResolver のキャッシュ無効化に使う）
        self.alias_generation = 0
        self._transaction: Transaction | None = None
        self._savepoint_seq = 0

    @classmethod
    def open(cls, db_path: Path | str, categories: TagCategories = DEFAULT_CATEGORIES) -> TagStore:
        """DBを開く（存在しなければ作成・マスタ初期化・インデックス作成まで行う）."""
        db_path = Path(db_path)
        if not db_path.exists():
            create_database(db_path)
            initialize_master_data(db_path, categories)
            build_indexes(db_path)

        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        apply_connection_pragmas(conn)
        create_schema(conn)
        return cls(conn, categories)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> TagStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # トランザクション
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    def begin(self) -> Transaction:
        """トランザクションを開始する（入れ子は不可）."""
        if self._transaction is not None:
            raise RuntimeError("A transaction is already active on this store")
        return Transaction(self).begin()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """複数文の更新を SAVEPOINT でまとめる（トランザクション内外どちらでも使える）."""
        self._savepoint_seq += 1
        name = f"sp_{self._savepoint_seq}"
        self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            self.conn.execute(f"ROLLBACK TO {name}")
            self.conn.execute(f"RELEASE {name}")
            raise
        else:
            self.conn.execute(f"RELEASE {name}")

    # ------------------------------------------------------------------
    # クエリ実行（タイムアウト付き）
    # ------------------------------------------------------------------

    def run_query(
        self,
        sql: str,
        params: Sequence[object] = (),
        *,
        timeout_ms: int | None = None,
    ) -> list[tuple]:
        """SELECT を実行する. 失敗（タイムアウト含む）は ExecutionError にラップする."""
        if timeout_ms is not None:
            deadline = time.monotonic() + timeout_ms / 1000.0
            self.conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_INTERVAL)
        try:
            logger.debug(f"SQL: {sql} params={list(params)}")
            return self.conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise ExecutionError(f"Query execution failed: {e}") from e
        finally:
            if timeout_ms is not None:
                self.conn.set_progress_handler(None, 0)

    # ------------------------------------------------------------------
    # ユーザー
    # ------------------------------------------------------------------

    def find_user_id(self, name: str) -> int | None:
        row = self.conn.execute("SELECT user_id FROM USERS WHERE name = ?", (name,)).fetchone()
        return row[0] if row else None

    def find_or_create_user(self, name: str) -> int:
        user_id = self.find_user_id(name)
        if user_id is not None:
            return user_id
        cur = self.conn.execute("INSERT INTO USERS (name) VALUES (?)", (name,))
        return int(cur.lastrowid)

    # ------------------------------------------------------------------
    # タグ
    # ------------------------------------------------------------------

    def get_tag(self, name: str) -> TagRecord | None:
        row = self.conn.execute(
            "SELECT tag_id, name, category, post_count FROM TAGS WHERE name = ?",
            (name,),
        ).fetchone()
        return TagRecord(*row) if row else None

    def find_or_create_tag(self, name: str, category: int | None = None) -> TagRecord:
        """タグを名前で取得する. 存在しなければ作成する（タグは初回利用時に遅延作成）."""
        name = normalize_tag_name(name)
        if not name:
            raise ValueError("Tag name must not be blank")
        tag = self.get_tag(name)
        if tag is not None:
            return tag
        code = self.categories.general.code if category is None else category
        cur = self.conn.execute("INSERT INTO TAGS (name, category) VALUES (?, ?)", (name, code))
        return TagRecord(int(cur.lastrowid), name, code, 0)

    def set_tag_category(self, tag_id: int, category: int) -> None:
        self.conn.execute(
            "UPDATE TAGS SET category = ?, updated_at = CURRENT_TIMESTAMP WHERE tag_id = ?",
            (category, tag_id),
        )

    def tag_names_for_post(self, post_id: int) -> list[str]:
        rows = self.conn.execute(
            """
            SELECT t.name FROM POST_TAGS pt JOIN TAGS t ON t.tag_id = pt.tag_id
            WHERE pt.post_id = ? ORDER BY t.name
            """,
            (post_id,),
        ).fetchall()
        return [r[0] for r in rows]

    def _refresh_post_counts(self, tag_ids: Iterable[int]) -> None:
        ids = sorted(set(tag_ids))
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        self.conn.execute(
            f"""
            UPDATE TAGS
            SET post_count = (SELECT COUNT(*) FROM POST_TAGS pt WHERE pt.tag_id = TAGS.tag_id),
                updated_at = CURRENT_TIMESTAMP
            WHERE tag_id IN ({placeholders})
            """,
            ids,
        )

    def regenerate_post_counts(self) -> int:
        """全タグの post_count を POST_TAGS から再計算する. 変更件数を返す."""
        cur = self.conn.execute(
            """
            UPDATE TAGS
            SET post_count = (SELECT COUNT(*) FROM POST_TAGS pt WHERE pt.tag_id = TAGS.tag_id)
            WHERE post_count != (SELECT COUNT(*) FROM POST_TAGS pt WHERE pt.tag_id = TAGS.tag_id)
            """
        )
        return cur.rowcount

    # ------------------------------------------------------------------
    # 投稿
    # ------------------------------------------------------------------

    def create_post(
        self,
        tags: str | Iterable[str] = "",
        *,
        created_at: datetime | str | None = None,
        **attrs: object,
    ) -> int:
        """投稿を作成し、タグ付けする（post_count も更新される）.

        Args:
            tags: 空白区切りのタグ文字列、またはタグ名の列
            created_at: 作成日時（None の場合は現在時刻）
            **attrs: POSTS の列値（rating, file_size, image_width, uploader_id など）

        Returns:
            作成した post_id
        """
        columns = list(attrs)
        values = list(attrs.values())
        if created_at is not None:
            columns += ["created_at", "updated_at"]
            values += [to_db_timestamp(created_at)] * 2

        with self.atomic():
            if columns:
                placeholders = ", ".join("?" for _ in columns)
                cur = self.conn.execute(
                    f"INSERT INTO POSTS ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
            else:
                cur = self.conn.execute("INSERT INTO POSTS DEFAULT VALUES")
            post_id = int(cur.lastrowid)
            names = tags.split() if isinstance(tags, str) else list(tags)
            self.add_post_tags(post_id, names)
        return post_id

    def add_post_tags(self, post_id: int, names: Iterable[str]) -> int:
        """投稿にタグを追加する. 追加した件数を返す."""
        added = 0
        for name in names:
            tag = self.find_or_create_tag(name)
            cur = self.conn.execute(
                "INSERT OR IGNORE INTO POST_TAGS (post_id, tag_id) VALUES (?, ?)",
                (post_id, tag.tag_id),
            )
            if cur.rowcount == 1:
                self.conn.execute("UPDATE TAGS SET post_count = post_count + 1 WHERE tag_id = ?", (tag.tag_id,))
                added += 1
        if added:
            self._touch_posts([post_id])
        return added

    def remove_post_tags(self, post_id: int, names: Iterable[str]) -> int:
        """投稿からタグを外す. 外した件数を返す."""
        removed = 0
        for name in names:
            tag = self.get_tag(normalize_tag_name(name))
            if tag is None:
                continue
            cur = self.conn.execute(
                "DELETE FROM POST_TAGS WHERE post_id = ? AND tag_id = ?",
                (post_id, tag.tag_id),
            )
            if cur.rowcount == 1:
                self.conn.execute("UPDATE TAGS SET post_count = post_count - 1 WHERE tag_id = ?", (tag.tag_id,))
                removed += 1
        if removed:
            self._touch_posts([post_id])
        return removed

    def post_ids_with_tag(self, name: str) -> list[int]:
        rows = self.conn.execute(
            """
            SELECT pt.post_id FROM POST_TAGS pt JOIN TAGS t ON t.tag_id = pt.tag_id
            WHERE t.name = ? ORDER BY pt.post_id
            """,
            (name,),
        ).fetchall()
        return [r[0] for r in rows]

    def replace_tag_on_posts(self, old_name: str, new_name: str) -> int:
        """old_name を持つ全投稿で、old_name を new_name に付け替える. 対象投稿数を返す."""
        old = self.get_tag(old_name)
        if old is None:
            return 0
        new = self.find_or_create_tag(new_name)
        post_ids = self.post_ids_with_tag(old.name)
        if not post_ids:
            return 0
        with self.atomic():
            self.conn.execute(
                "INSERT OR IGNORE INTO POST_TAGS (post_id, tag_id) SELECT post_id, ? FROM POST_TAGS WHERE tag_id = ?",
                (new.tag_id, old.tag_id),
            )
            self.conn.execute("DELETE FROM POST_TAGS WHERE tag_id = ?", (old.tag_id,))
            self._refresh_post_counts([old.tag_id, new.tag_id])
            self._touch_posts(post_ids)
        return len(post_ids)

    def add_tags_to_posts_with(self, antecedent_name: str, consequent_names: Iterable[str]) -> int:
        """antecedent を持つ全投稿に consequent 群を追加する. 対象投稿数を返す."""
        antecedent = self.get_tag(antecedent_name)
        if antecedent is None:
            return 0
        post_ids = self.post_ids_with_tag(antecedent.name)
        if not post_ids:
            return 0
        with self.atomic():
            tag_ids = []
            for name in consequent_names:
                consequent = self.find_or_create_tag(name)
                self.conn.execute(
                    "INSERT OR IGNORE INTO POST_TAGS (post_id, tag_id) SELECT post_id, ? FROM POST_TAGS WHERE tag_id = ?",
                    (consequent.tag_id, antecedent.tag_id),
                )
                tag_ids.append(consequent.tag_id)
            self._refresh_post_counts(tag_ids)
            self._touch_posts(post_ids)
        return len(post_ids)

    def _touch_posts(self, post_ids: Sequence[int]) -> None:
        self.conn.executemany(
            "UPDATE POSTS SET updated_at = CURRENT_TIMESTAMP WHERE post_id = ?",
            [(pid,) for pid in post_ids],
        )

    # ------------------------------------------------------------------
    # エイリアス / インプリケーション
    # ------------------------------------------------------------------

    def insert_relationship(
        self,
        kind: RelationshipKind,
        antecedent_name: str,
        consequent_name: str,
        *,
        status: str = "pending",
        forum_topic_id: int | None = None,
        creator_id: int | None = None,
    ) -> RelationshipRecord:
        table, _ = _RELATIONSHIP_TABLES[kind]
        cur = self.conn.execute(
            f"""
            INSERT INTO {table} (antecedent_name, consequent_name, status, forum_topic_id, creator_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            (antecedent_name, consequent_name, status, forum_topic_id, creator_id),
        )
        if kind == "alias":
            self.alias_generation += 1
        return RelationshipRecord(
            int(cur.lastrowid), antecedent_name, consequent_name, status, forum_topic_id, creator_id, None
        )

    def find_relationship(
        self,
        kind: RelationshipKind,
        antecedent_name: str,
        consequent_name: str,
        status: str = "active",
    ) -> RelationshipRecord | None:
        table, id_col = _RELATIONSHIP_TABLES[kind]
        row = self.conn.execute(
            f"""
            SELECT {id_col}, antecedent_name, consequent_name, status, forum_topic_id, creator_id, approver_id
            FROM {table}
            WHERE antecedent_name = ? AND consequent_name = ? AND status = ?
            ORDER BY {id_col} DESC LIMIT 1
            """,
            (antecedent_name, consequent_name, status),
        ).fetchone()
        return RelationshipRecord(*row) if row else None

    def active_relationships(self, kind: RelationshipKind) -> list[RelationshipRecord]:
        table, id_col = _RELATIONSHIP_TABLES[kind]
        rows = self.conn.execute(
            f"""
            SELECT {id_col}, antecedent_name, consequent_name, status, forum_topic_id, creator_id, approver_id
            FROM {table} WHERE status = 'active' ORDER BY {id_col}
            """
        ).fetchall()
        return [RelationshipRecord(*r) for r in rows]

    def set_relationship_status(
        self,
        kind: RelationshipKind,
        record_id: int,
        status: str,
        approver_id: int | None = None,
    ) -> None:
        table, id_col = _RELATIONSHIP_TABLES[kind]
        self.conn.execute(
            f"""
            UPDATE {table}
            SET status = ?, approver_id = COALESCE(?, approver_id), updated_at = CURRENT_TIMESTAMP
            WHERE {id_col} = ?
            """,
            (status, approver_id, record_id),
        )
        if kind == "alias":
            self.alias_generation += 1

    def active_alias_consequent(self, antecedent_name: str) -> str | None:
        row = self.conn.execute(
            """
            SELECT consequent_name FROM TAG_ALIASES
            WHERE antecedent_name = ? AND status = 'active'
            ORDER BY alias_id DESC LIMIT 1
            """,
            (antecedent_name,),
        ).fetchone()
        return row[0] if row else None

    def retarget_aliases(self, old_consequent: str, new_consequent: str) -> int:
        """old_consequent を指す有効エイリアスを new_consequent へ付け替える（チェーンの畳み込み）."""
        cur = self.conn.execute(
            """
            UPDATE TAG_ALIASES SET consequent_name = ?, updated_at = CURRENT_TIMESTAMP
            WHERE consequent_name = ? AND status = 'active' AND antecedent_name != ?
            """,
            (new_consequent, old_consequent, new_consequent),
        )
        self.alias_generation += 1
        return cur.rowcount

    def move_implications(self, old_name: str, new_name: str) -> int:
        """old_name を含む有効インプリケーションを new_name へ付け替える.

        付け替えで自己参照や重複になるものは rejected にする。
        """
        moved = 0
        for record in self.active_relationships("implication"):
            if old_name not in (record.antecedent_name, record.consequent_name):
                continue
            antecedent = new_name if record.antecedent_name == old_name else record.antecedent_name
            consequent = new_name if record.consequent_name == old_name else record.consequent_name
            duplicate = self.find_relationship("implication", antecedent, consequent, "active")
            if antecedent == consequent or duplicate is not None:
                self.set_relationship_status("implication", record.record_id, "rejected")
                continue
            self.conn.execute(
                """
                UPDATE TAG_IMPLICATIONS
                SET antecedent_name = ?, consequent_name = ?, updated_at = CURRENT_TIMESTAMP
                WHERE implication_id = ?
                """,
                (antecedent, consequent, record.record_id),
            )
            moved += 1
        return moved

    # ------------------------------------------------------------------
    # Wiki / アーティスト
    # ------------------------------------------------------------------

    def create_wiki_page(self, title: str, body: str = "") -> int:
        cur = self.conn.execute(
            "INSERT INTO WIKI_PAGES (title, body) VALUES (?, ?)",
            (normalize_tag_name(title), body),
        )
        return int(cur.lastrowid)

    def wiki_page_exists(self, title: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM WIKI_PAGES WHERE title = ? AND is_deleted = 0",
            (title,),
        ).fetchone()
        return row is not None

    def rename_wiki_page(self, old_title: str, new_title: str) -> bool:
        cur = self.conn.execute(
            "UPDATE WIKI_PAGES SET title = ?, updated_at = CURRENT_TIMESTAMP WHERE title = ?",
            (new_title, old_title),
        )
        return cur.rowcount == 1

    def create_artist(self, name: str) -> int:
        cur = self.conn.execute("INSERT INTO ARTISTS (name) VALUES (?)", (normalize_tag_name(name),))
        return int(cur.lastrowid)

    def artist_exists(self, name: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM ARTISTS WHERE name = ? AND is_active = 1", (name,)).fetchone()
        return row is not None

    def rename_artist(self, old_name: str, new_name: str) -> bool:
        cur = self.conn.execute(
            "UPDATE ARTISTS SET name = ?, updated_at = CURRENT_TIMESTAMP WHERE name = ?",
            (new_name, old_name),
        )
        return cur.rowcount == 1

    # ------------------------------------------------------------------
    # プール / お気に入り / 投票
    # ------------------------------------------------------------------

    def create_pool(self, name: str, post_ids: Sequence[int] = (), category: str = "series") -> int:
        with self.atomic():
            cur = self.conn.execute(
                "INSERT INTO POOLS (name, category) VALUES (?, ?)",
                (normalize_tag_name(name), category),
            )
            pool_id = int(cur.lastrowid)
            self.conn.executemany(
                "INSERT INTO POOL_POSTS (pool_id, post_id, position) VALUES (?, ?, ?)",
                [(pool_id, post_id, i) for i, post_id in enumerate(post_ids)],
            )
        return pool_id

    def add_favorite(self, user_id: int, post_id: int) -> None:
        with self.atomic():
            cur = self.conn.execute(
                "INSERT OR IGNORE INTO FAVORITES (user_id, post_id) VALUES (?, ?)",
                (user_id, post_id),
            )
            if cur.rowcount == 1:
                self.conn.execute("UPDATE POSTS SET fav_count = fav_count + 1 WHERE post_id = ?", (post_id,))

    def add_vote(self, user_id: int, post_id: int, score: int) -> None:
        with self.atomic():
            self.conn.execute(
                "INSERT OR REPLACE INTO POST_VOTES (post_id, user_id, score) VALUES (?, ?, ?)",
                (post_id, user_id, score),
            )
            self.conn.execute(
                "UPDATE POSTS SET score = (SELECT COALESCE(SUM(score), 0) FROM POST_VOTES WHERE post_id = ?) "
                "WHERE post_id = ?",
                (post_id, post_id),
            )
