"""エイリアス/インプリケーションの検証と承認処理.

検証:
    - エイリアス: 自己参照、有効エイリアスの重複、consequent が既にエイリアス済み、カテゴリ不一致
    - インプリケーション: 自己参照、重複、循環、推移的に冗長、antecedent/consequent がエイリアス済み
    - 二次検証（skip_secondary_validations で省略可）: Wiki ページの有無、投稿数の下限

承認時の副作用:
    - エイリアス: チェーンの畳み込み、インプリケーションの付け替え、カテゴリの引き継ぎ、
      投稿のタグ付け替え（post_count は正確に更新）、Wiki/アーティスト名の変更（任意）
    - インプリケーション: antecedent を持つ全投稿に consequent（と、その先の含意タグ）を追加
"""

from __future__ import annotations

from collections import deque

from loguru import logger

from booru_tag_engine.core.config import EngineConfig
from booru_tag_engine.core.exceptions import ValidationError
from booru_tag_engine.core.store import RelationshipKind, RelationshipRecord, TagStore


def implication_graph(store: TagStore) -> dict[str, set[str]]:
    """有効なインプリケーションの隣接リスト（antecedent → consequent 集合）."""
    graph: dict[str, set[str]] = {}
    for record in store.active_relationships("implication"):
        graph.setdefault(record.antecedent_name, set()).add(record.consequent_name)
    return graph


def implied_tags(graph: dict[str, set[str]], name: str) -> set[str]:
    """name から推移的に含意される全タグ（name 自身は含まない）."""
    seen: set[str] = set()
    queue = deque(graph.get(name, ()))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        queue.extend(graph.get(current, ()))
    seen.discard(name)
    return seen


def _category_of(store: TagStore, name: str) -> int:
    tag = store.get_tag(name)
    return tag.category if tag is not None else store.categories.general.code


def _post_count_of(store: TagStore, name: str) -> int:
    tag = store.get_tag(name)
    return tag.post_count if tag is not None else 0


def alias_errors(
    store: TagStore,
    antecedent: str,
    consequent: str,
    config: EngineConfig,
    *,
    skip_secondary_validations: bool = True,
) -> list[str]:
    """エイリアス作成の検証エラーを返す（空なら妥当）."""
    if antecedent == consequent:
        return ["Cannot alias a tag to itself"]

    errors: list[str] = []
    existing = store.active_alias_consequent(antecedent)
    if existing is not None:
        errors.append(f"{antecedent} is already aliased to {existing}")
    if store.active_alias_consequent(consequent) is not None:
        errors.append(f"A tag alias for {consequent} already exists")

    general = store.categories.general.code
    antecedent_category = _category_of(store, antecedent)
    consequent_category = _category_of(store, consequent)
    if general not in (antecedent_category, consequent_category) and antecedent_category != consequent_category:
        errors.append(
            "Cannot alias tags of different categories "
            f"({store.categories.name_for(antecedent_category)} -> {store.categories.name_for(consequent_category)})"
        )

    if not skip_secondary_validations:
        if not store.wiki_page_exists(consequent):
            errors.append(f"The {consequent} tag needs a corresponding wiki page")
        if _post_count_of(store, antecedent) < config.minimum_alias_post_count:
            errors.append(
                f"The {antecedent} tag must have at least {config.minimum_alias_post_count} posts for an alias to be created"
            )
    return errors


def implication_errors(
    store: TagStore,
    antecedent: str,
    consequent: str,
    *,
    skip_secondary_validations: bool = True,
) -> list[str]:
    """インプリケーション作成の検証エラーを返す（空なら妥当）."""
    if antecedent == consequent:
        return ["Cannot implicate a tag to itself"]

    errors: list[str] = []
    graph = implication_graph(store)
    if consequent in graph.get(antecedent, set()):
        errors.append(f"Implication {antecedent} -> {consequent} already exists")
    elif consequent in implied_tags(graph, antecedent):
        errors.append(f"{antecedent} already implies {consequent} through another implication")
    if antecedent in implied_tags(graph, consequent):
        errors.append("Tag implication can not create a circular relation with another tag implication")
    if store.active_alias_consequent(antecedent) is not None:
        errors.append(f"Antecedent tag must not be aliased to another tag ({antecedent})")
    if store.active_alias_consequent(consequent) is not None:
        errors.append(f"Consequent tag must not be aliased to another tag ({consequent})")

    if not skip_secondary_validations:
        for name in (antecedent, consequent):
            if not store.wiki_page_exists(name):
                errors.append(f"The {name} tag needs a corresponding wiki page")
    return errors


def create_alias(
    store: TagStore,
    antecedent: str,
    consequent: str,
    config: EngineConfig,
    *,
    forum_topic_id: int | None = None,
    creator_id: int | None = None,
    skip_secondary_validations: bool = True,
) -> RelationshipRecord:
    """検証の上、保留中（pending）のエイリアスを作成する.

    Raises:
        ValidationError: 検証エラーがある場合
    """
    errors = alias_errors(store, antecedent, consequent, config, skip_secondary_validations=skip_secondary_validations)
    if errors:
        raise ValidationError(errors, f"create alias {antecedent} -> {consequent}")
    return store.insert_relationship(
        "alias", antecedent, consequent, forum_topic_id=forum_topic_id, creator_id=creator_id
    )


def create_implication(
    store: TagStore,
    antecedent: str,
    consequent: str,
    *,
    forum_topic_id: int | None = None,
    creator_id: int | None = None,
    skip_secondary_validations: bool = True,
) -> RelationshipRecord:
    """検証の上、保留中（pending）のインプリケーションを作成する.

    Raises:
        ValidationError: 検証エラーがある場合
    """
    errors = implication_errors(store, antecedent, consequent, skip_secondary_validations=skip_secondary_validations)
    if errors:
        raise ValidationError(errors, f"create implication {antecedent} -> {consequent}")
    return store.insert_relationship(
        "implication", antecedent, consequent, forum_topic_id=forum_topic_id, creator_id=creator_id
    )


def rename_wiki_and_artist(store: TagStore, antecedent: str, consequent: str) -> list[str]:
    """antecedent 名の Wiki ページ/アーティストを consequent 名に変更する. 変更した種類を返す."""
    renamed: list[str] = []
    if store.wiki_page_exists(antecedent):
        if store.wiki_page_exists(consequent):
            logger.warning(f"Wiki page rename skipped: {consequent} already exists")
        elif store.rename_wiki_page(antecedent, consequent):
            renamed.append("wiki_page")
    if store.artist_exists(antecedent):
        if store.artist_exists(consequent):
            logger.warning(f"Artist rename skipped: {consequent} already exists")
        elif store.rename_artist(antecedent, consequent):
            renamed.append("artist")
    return renamed


def approve_alias(
    store: TagStore,
    record: RelationshipRecord,
    *,
    approver_id: int | None = None,
    rename_pages: bool = False,
) -> int:
    """エイリアスを承認する. 付け替えた投稿数を返す."""
    antecedent, consequent = record.antecedent_name, record.consequent_name
    store.set_relationship_status("alias", record.record_id, "active", approver_id)

    antecedent_tag = store.find_or_create_tag(antecedent)
    consequent_tag = store.find_or_create_tag(consequent)
    retargeted = store.retarget_aliases(antecedent, consequent)
    moved = store.move_implications(antecedent, consequent)

    general = store.categories.general.code
    if antecedent_tag.category != general and consequent_tag.category == general:
        store.set_tag_category(consequent_tag.tag_id, antecedent_tag.category)

    post_count = store.replace_tag_on_posts(antecedent, consequent)
    if rename_pages:
        rename_wiki_and_artist(store, antecedent, consequent)

    logger.info(
        f"Alias approved: {antecedent} -> {consequent} "
        f"(posts={post_count}, retargeted_aliases={retargeted}, moved_implications={moved})"
    )
    return post_count


def approve_implication(store: TagStore, record: RelationshipRecord, *, approver_id: int | None = None) -> int:
    """インプリケーションを承認する. タグを追加した投稿数を返す."""
    antecedent, consequent = record.antecedent_name, record.consequent_name
    store.set_relationship_status("implication", record.record_id, "active", approver_id)
    store.find_or_create_tag(antecedent)
    store.find_or_create_tag(consequent)

    implied = [consequent, *sorted(implied_tags(implication_graph(store), consequent))]
    post_count = store.add_tags_to_posts_with(antecedent, implied)
    logger.info(f"Implication approved: {antecedent} -> {consequent} (posts={post_count})")
    return post_count


def reject_relationship(store: TagStore, kind: RelationshipKind, record: RelationshipRecord) -> None:
    store.set_relationship_status(kind, record.record_id, "rejected")
    logger.info(f"{kind.capitalize()} rejected: {record.antecedent_name} -> {record.consequent_name}")


def estimate_relationship_update_count(store: TagStore, antecedent: str) -> int:
    """エイリアス/インプリケーションの承認で更新される投稿数の見積もり（antecedent の post_count）."""
    return _post_count_of(store, antecedent)
