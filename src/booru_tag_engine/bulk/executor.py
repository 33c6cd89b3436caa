"""バルク更新の実行.

スクリプト全体を1トランザクションで適用します。コマンドは記述順に処理し、
1つでも失敗すればそれまでの変更を含めて全体をロールバックします。

apply() は commit/rollback を行わず、BulkSuccess / BulkFailure を返すだけです。
commit するか rollback するかは呼び出し側（process() または独自の呼び出し元）が決めます。

使用例:
    >>> importer = BulkUpdateImporter("alias kitten -> cat", store=store)
    >>> result = importer.process(SearchContext(user_id=1, user_name="admin"))
    >>> result.ok
    True
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from functools import cached_property
from typing import ClassVar, Union

from loguru import logger

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.exceptions import (
    ExecutionError,
    NotFoundError,
    ParseError,
    TagEngineError,
    ValidationError,
)
from booru_tag_engine.core.store import TagStore, Transaction
from booru_tag_engine.search.metatags import build_metatag_registry
from booru_tag_engine.search.terms import scan_tags

from .commands import (
    BulkCommand,
    ChangeCategory,
    CreateAlias,
    CreateImplication,
    MassUpdate,
    RemoveAlias,
    RemoveImplication,
    parse_script,
)
from .relationships import (
    alias_errors,
    approve_alias,
    approve_implication,
    create_alias,
    create_implication,
    estimate_relationship_update_count,
    implication_errors,
    reject_relationship,
)
from .tasks import InMemoryTaskSink, MassUpdateJob, TaskSink, estimate_mass_update


@dataclass(frozen=True)
class AppliedMutation:
    """適用済みコマンド1件の要約."""

    kind: str
    description: str
    line_number: int
    post_count: int = 0


@dataclass(frozen=True)
class BulkSuccess:
    ok: ClassVar[bool] = True
    mutations: tuple[AppliedMutation, ...] = ()

    def unwrap(self) -> tuple[AppliedMutation, ...]:
        return self.mutations


@dataclass(frozen=True)
class BulkFailure:
    ok: ClassVar[bool] = False
    error: TagEngineError
    command: BulkCommand | None = None

    @property
    def message(self) -> str:
        """利用者向けのエラーメッセージ（対象行とコマンドを含む）."""
        if self.command is None or (isinstance(self.error, ValidationError) and self.error.command):
            return str(self.error)
        return f"{self.error} (line {self.command.line_number}: {self.command.describe()})"

    def unwrap(self) -> tuple[AppliedMutation, ...]:
        raise self.error


BulkResult = Union[BulkSuccess, BulkFailure]


class BulkUpdateImporter:
    """バルク更新スクリプトの検証・適用・見積もり.

    Args:
        text: スクリプト本文
        forum_topic_id: 作成するエイリアス/インプリケーションに紐付けるトピックID
        rename_aliased_pages: エイリアス承認時に Wiki ページ/アーティスト名も変更するか
        skip_secondary_validations: 二次検証（Wiki ページの有無、投稿数の下限）を省略するか
        store: 適用先ストア
        task_sink: 一括置換ジョブの受け口（省略時は InMemoryTaskSink）
        config: エンジン設定
    """

    def __init__(
        self,
        text: str,
        forum_topic_id: int | None = None,
        rename_aliased_pages: bool = False,
        skip_secondary_validations: bool = True,
        *,
        store: TagStore,
        task_sink: TaskSink | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.text = text
        self.forum_topic_id = forum_topic_id
        self.rename_aliased_pages = rename_aliased_pages
        self.skip_secondary_validations = skip_secondary_validations
        self.store = store
        self.task_sink: TaskSink = task_sink if task_sink is not None else InMemoryTaskSink()
        self.config = config or EngineConfig(categories=store.categories)

    @cached_property
    def commands(self) -> list[BulkCommand]:
        """解析済みコマンド列.

        Raises:
            ParseError: 解釈できない行がある場合
        """
        return parse_script(self.text)

    def validate(self) -> None:
        """変更を加えずに検証する（dry run）.

        エイリアス/インプリケーションの作成のみモデル検証を行い、最初の失敗で停止する。

        Raises:
            ParseError: 解釈できない行がある場合
            ValidationError: 検証エラーがある場合
        """
        for command in self.commands:
            if isinstance(command, CreateAlias):
                errors = alias_errors(
                    self.store,
                    command.antecedent,
                    command.consequent,
                    self.config,
                    skip_secondary_validations=self.skip_secondary_validations,
                )
            elif isinstance(command, CreateImplication):
                errors = implication_errors(
                    self.store,
                    command.antecedent,
                    command.consequent,
                    skip_secondary_validations=self.skip_secondary_validations,
                )
            else:
                continue
            if errors:
                raise ValidationError(errors, command.describe())

    def apply(self, tx: Transaction, ctx: SearchContext) -> BulkResult:
        """トランザクション内で全コマンドを適用する（commit/rollback はしない）."""
        mutations: list[AppliedMutation] = []
        for command in self.commands:
            try:
                post_count = self._apply_command(command, tx, ctx)
            except (ValidationError, NotFoundError) as e:
                return BulkFailure(e, command)
            except sqlite3.Error as e:
                return BulkFailure(ExecutionError(f"Store operation failed: {e}", command.describe()), command)
            mutations.append(AppliedMutation(command.kind, command.describe(), command.line_number, post_count))
        return BulkSuccess(tuple(mutations))

    def process(self, ctx: SearchContext) -> BulkResult:
        """解析・適用し、成功なら commit、失敗なら rollback する."""
        try:
            commands = self.commands
        except ParseError as e:
            return BulkFailure(e)

        logger.info(f"Bulk update started: {len(commands)} commands (forum_topic_id={self.forum_topic_id})")
        try:
            tx = self.store.begin()
        except ExecutionError as e:
            logger.error(f"Bulk update not started: {e}")
            return BulkFailure(e)
        try:
            result = self.apply(tx, ctx)
        except BaseException:
            tx.rollback()
            raise

        if isinstance(result, BulkSuccess):
            try:
                tx.commit()
            except ExecutionError as e:
                logger.error(f"Bulk update rolled back: {e}")
                return BulkFailure(e)
            logger.info(f"Bulk update committed: {len(result.mutations)} commands applied")
        else:
            tx.rollback()
            logger.error(f"Bulk update rolled back: {result.message}")
        return result

    def _apply_command(self, command: BulkCommand, tx: Transaction, ctx: SearchContext) -> int:
        store = self.store
        if isinstance(command, CreateAlias):
            record = create_alias(
                store,
                command.antecedent,
                command.consequent,
                self.config,
                forum_topic_id=self.forum_topic_id,
                creator_id=ctx.user_id,
                skip_secondary_validations=self.skip_secondary_validations,
            )
            return approve_alias(store, record, approver_id=ctx.user_id, rename_pages=self.rename_aliased_pages)

        if isinstance(command, CreateImplication):
            record = create_implication(
                store,
                command.antecedent,
                command.consequent,
                forum_topic_id=self.forum_topic_id,
                creator_id=ctx.user_id,
                skip_secondary_validations=self.skip_secondary_validations,
            )
            return approve_implication(store, record, approver_id=ctx.user_id)

        if isinstance(command, RemoveAlias):
            record = store.find_relationship("alias", command.antecedent, command.consequent, "active")
            if record is None:
                raise NotFoundError(f"Alias for {command.antecedent} not found")
            reject_relationship(store, "alias", record)
            return 0

        if isinstance(command, RemoveImplication):
            record = store.find_relationship("implication", command.antecedent, command.consequent, "active")
            if record is None:
                raise NotFoundError(f"Implication for {command.antecedent} not found")
            reject_relationship(store, "implication", record)
            return 0

        if isinstance(command, MassUpdate):
            job = MassUpdateJob(command.query, command.replacement, ctx.user_id, ctx.user_name)
            tx.after_commit(lambda: self.task_sink.enqueue(job))
            return 0

        if isinstance(command, ChangeCategory):
            code = self.config.categories.value_for(command.category)
            tag = store.get_tag(command.tag)
            if tag is None:
                raise NotFoundError(f"Tag {command.tag} not found")
            store.set_tag_category(tag.tag_id, code)
            return tag.post_count

        raise TypeError(f"Unknown command: {command!r}")

    def estimate_update_count(self) -> int:
        """スクリプト全体で更新される投稿数の見積もり（プレビュー用）."""
        total = 0
        for command in self.commands:
            if isinstance(command, (CreateAlias, CreateImplication)):
                total += estimate_relationship_update_count(self.store, command.antecedent)
            elif isinstance(command, MassUpdate):
                total += estimate_mass_update(self.store, self.config, command.query)
            elif isinstance(command, ChangeCategory):
                tag = self.store.get_tag(command.tag)
                total += tag.post_count if tag is not None else 0
        return total

    def affected_tags(self) -> set[str]:
        """スクリプトが参照する全タグ名."""
        metatags = build_metatag_registry(self.config.categories).names
        tags: set[str] = set()
        for command in self.commands:
            if isinstance(command, (CreateAlias, CreateImplication, RemoveAlias, RemoveImplication)):
                tags.update((command.antecedent, command.consequent))
            elif isinstance(command, MassUpdate):
                tags.update(scan_tags(command.query, metatags))
                tags.update(scan_tags(command.replacement, metatags))
            elif isinstance(command, ChangeCategory):
                tags.add(command.tag)
        return tags
