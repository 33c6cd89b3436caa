"""バルク更新プレビューの出力（レポート）.

バルク更新スクリプトが参照するタグと更新件数の見積もりをCSVとして出力します。
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import polars as pl

if TYPE_CHECKING:
    from booru_tag_engine.bulk.executor import BulkUpdateImporter


def affected_tags_frame(importer: BulkUpdateImporter) -> pl.DataFrame:
    """影響を受けるタグの一覧（tag, category, post_count）. 未作成のタグは post_count=0."""
    store = importer.store
    rows = []
    for name in sorted(importer.affected_tags()):
        tag = store.get_tag(name)
        category = store.categories.name_for(tag.category) if tag else store.categories.general.name
        rows.append({"tag": name, "category": category, "post_count": tag.post_count if tag else 0})
    return pl.DataFrame(
        rows,
        schema={"tag": pl.String, "category": pl.String, "post_count": pl.Int64},
    )


def export_bulk_preview(
    importer: BulkUpdateImporter,
    output_dir: Path | str,
) -> dict[str, Path | None]:
    """バルク更新のプレビューをCSVファイルとして出力する.

    Args:
        importer: 解析対象の BulkUpdateImporter
        output_dir: 出力ディレクトリ

    Returns:
        出力したCSVのパス（影響タグが無ければ affected_tags は None）
        - "affected_tags": affected_tags.csv
        - "summary": summary.csv
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    result_paths: dict[str, Path | None] = {}

    affected = affected_tags_frame(importer)
    affected_path = output_dir / "affected_tags.csv"
    if len(affected) > 0:
        affected.write_csv(affected_path)
        result_paths["affected_tags"] = affected_path
    else:
        result_paths["affected_tags"] = None

    summary = pl.DataFrame(
        {
            "metric": ["commands", "affected_tags", "estimated_update_count"],
            "value": [len(importer.commands), len(affected), importer.estimate_update_count()],
        }
    )
    summary_path = output_dir / "summary.csv"
    summary.write_csv(summary_path)
    result_paths["summary"] = summary_path

    return result_paths
