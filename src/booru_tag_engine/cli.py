"""booru-tag-engine のコマンドラインインターフェース.

サブコマンド:
    init          DBを作成する（スキーマ・マスタデータ・インデックス）
    import-posts  CSV/JSON の投稿フィクスチャを取り込む
    search        クエリに一致する投稿IDを表示する
    count         クエリの件数を表示する（件数キャッシュ経由）
    explain       コンパイル結果（プランとSQL）を表示する
    bulk          バルク更新スクリプトを検証・見積もり・適用する
    health        エイリアス/インプリケーションの健全性レポートを出力する
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from loguru import logger

from booru_tag_engine.bulk.executor import BulkUpdateImporter
from booru_tag_engine.bulk.tasks import InMemoryTaskSink, MassUpdateWorker
from booru_tag_engine.core.config import EngineConfig, load_config
from booru_tag_engine.core.context import SearchContext
from booru_tag_engine.core.exceptions import TagEngineError
from booru_tag_engine.core.reports import export_bulk_preview
from booru_tag_engine.core.store import TagStore
from booru_tag_engine.importer import import_fixture
from booru_tag_engine.search.compiler import QueryCompiler
from booru_tag_engine.search.count_cache import CountCache, SqliteCountCacheBackend
from booru_tag_engine.search.sql import build_select, select_post_ids
from booru_tag_engine.tools.report_relationship_health import run_relationship_health_checks


def _load_config(path: Path | None) -> EngineConfig:
    return load_config(path) if path is not None else EngineConfig()


def _open_store(args: argparse.Namespace, config: EngineConfig) -> TagStore:
    return TagStore.open(args.db, config.categories)


def _context(args: argparse.Namespace, store: TagStore) -> SearchContext:
    user_name = getattr(args, "user", None)
    user_id = store.find_user_id(user_name) if user_name else None
    return SearchContext(
        user_id=user_id,
        user_name=user_name,
        is_moderator=getattr(args, "moderator", False),
        safe_mode=getattr(args, "safe_mode", False),
        hide_deleted=getattr(args, "hide_deleted", False),
    )


def cmd_init(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    with _open_store(args, config):
        pass
    print(f"Initialized database: {args.db}")
    return 0


def cmd_import_posts(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    with _open_store(args, config) as store:
        imported = import_fixture(store, args.input)
    print(f"Imported {imported} posts from {args.input}")
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    with _open_store(args, config) as store:
        plan = QueryCompiler.for_store(store, config).compile(args.query, _context(args, store))
        post_ids = select_post_ids(
            store, plan, limit=args.limit, offset=args.offset, timeout_ms=config.statement_timeout_ms
        )
    for post_id in post_ids:
        print(post_id)
    return 0


def cmd_count(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    with _open_store(args, config) as store:
        cache = CountCache(store, config, SqliteCountCacheBackend(store))
        print(cache.fast_count(args.query, _context(args, store)))
    return 0


def cmd_explain(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    with _open_store(args, config) as store:
        plan = QueryCompiler.for_store(store, config).compile(args.query, _context(args, store))
    described = {
        key: sorted(value) if isinstance(value, set) else value for key, value in plan.describe().items()
    }
    sql, params = build_select(plan, limit=args.limit)
    print(json.dumps(described, ensure_ascii=False, indent=2))
    print(sql)
    print(json.dumps(params, ensure_ascii=False, default=str))
    return 0


def cmd_bulk(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    text = Path(args.script).read_text(encoding="utf-8")
    with _open_store(args, config) as store:
        sink = InMemoryTaskSink()
        importer = BulkUpdateImporter(
            text,
            forum_topic_id=args.forum_topic_id,
            rename_aliased_pages=args.rename_pages,
            skip_secondary_validations=not args.secondary_validations,
            store=store,
            task_sink=sink,
            config=config,
        )

        if args.preview_dir is not None:
            paths = export_bulk_preview(importer, args.preview_dir)
            for name, path in paths.items():
                print(f"{name}: {path if path is not None else '(none)'}")

        if args.estimate:
            print(f"Estimated posts to update: {importer.estimate_update_count()}")

        if args.validate_only:
            importer.validate()
            print(f"Script is valid: {len(importer.commands)} commands")
            return 0
        if args.estimate or args.preview_dir is not None:
            return 0

        result = importer.process(_context(args, store))
        if not result.ok:
            print(result.message, file=sys.stderr)
            return 1
        for mutation in result.mutations:
            print(f"line {mutation.line_number}: {mutation.description} (posts={mutation.post_count})")

        if args.run_mass_updates:
            worker = MassUpdateWorker(store, config)
            for job in sink.drain():
                updated = worker.perform(job)
                print(f"mass update {job.query} -> {job.replacement}: {updated} posts")
        else:
            for job in sink.jobs:
                print(f"queued mass update {job.query} -> {job.replacement}")
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    summary = run_relationship_health_checks(args.db, args.out_dir, fix_post_counts=args.fix_post_counts)
    print(f"Wrote health reports: {summary.parent}")
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", type=Path, required=True, help="SQLite DB path")
    parser.add_argument("--config", type=Path, default=None, help="Engine config JSON (optional)")


def _add_context(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user", type=str, default=None, help="Acting user name (resolves `self`)")
    parser.add_argument("--moderator", action="store_true", help="Allow searching other users' votes")
    parser.add_argument("--safe-mode", action="store_true", help="Implicitly add rating:s")
    parser.add_argument("--hide-deleted", action="store_true", help="Hide deleted posts unless status: is given")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="booru-tag-engine", description="Booru-style tag search and bulk updates")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("init", help="Create database")
    _add_common(p)
    p.set_defaults(func=cmd_init)

    p = subparsers.add_parser("import-posts", help="Import posts from a CSV/JSON fixture")
    _add_common(p)
    p.add_argument("--input", type=Path, required=True, help="Fixture file (.csv or .json)")
    p.set_defaults(func=cmd_import_posts)

    p = subparsers.add_parser("search", help="Print post IDs matching a query")
    _add_common(p)
    _add_context(p)
    p.add_argument("query", help="Tag query")
    p.add_argument("--limit", type=int, default=20, help="Maximum number of posts (limit: overrides)")
    p.add_argument("--offset", type=int, default=0, help="Number of posts to skip")
    p.set_defaults(func=cmd_search)

    p = subparsers.add_parser("count", help="Print the number of posts matching a query")
    _add_common(p)
    _add_context(p)
    p.add_argument("query", help="Tag query")
    p.set_defaults(func=cmd_count)

    p = subparsers.add_parser("explain", help="Print the compiled plan and SQL")
    _add_common(p)
    _add_context(p)
    p.add_argument("query", help="Tag query")
    p.add_argument("--limit", type=int, default=None, help="Row limit for the generated SQL")
    p.set_defaults(func=cmd_explain)

    p = subparsers.add_parser("bulk", help="Validate, estimate or apply a bulk update script")
    _add_common(p)
    p.add_argument("--script", type=Path, required=True, help="Bulk update script file")
    p.add_argument("--user", type=str, default=None, help="Acting user name")
    p.add_argument("--forum-topic-id", type=int, default=None, help="Forum topic linked to created relationships")
    p.add_argument("--rename-pages", action="store_true", help="Rename wiki pages/artists of aliased tags")
    p.add_argument(
        "--secondary-validations",
        action="store_true",
        help="Require wiki pages and minimum post counts for new aliases/implications",
    )
    p.add_argument("--validate-only", action="store_true", help="Validate without applying")
    p.add_argument("--estimate", action="store_true", help="Print the estimated number of updated posts")
    p.add_argument("--preview-dir", type=Path, default=None, help="Write affected_tags.csv / summary.csv here")
    p.add_argument(
        "--run-mass-updates",
        action="store_true",
        help="Perform queued mass updates after a successful commit",
    )
    p.set_defaults(func=cmd_bulk)

    p = subparsers.add_parser("health", help="Write alias/implication health reports")
    p.add_argument("--db", type=Path, required=True, help="SQLite DB path")
    p.add_argument("--out-dir", type=Path, required=True, help="Output directory for TSV reports")
    p.add_argument("--fix-post-counts", action="store_true", help="Regenerate drifted TAGS.post_count values")
    p.set_defaults(func=cmd_health)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI エントリポイント."""
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (TagEngineError, ValueError, FileNotFoundError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
