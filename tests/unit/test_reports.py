"""core/reports.py のユニットテスト."""

from pathlib import Path

import polars as pl

from booru_tag_engine.bulk.executor import BulkUpdateImporter
from booru_tag_engine.core.reports import affected_tags_frame, export_bulk_preview
from booru_tag_engine.core.store import TagStore


class TestExportBulkPreview:
    def test_export(self, store: TagStore, tmp_path: Path) -> None:
        store.create_post("kitten")
        store.find_or_create_tag("miku", 4)
        importer = BulkUpdateImporter("alias kitten -> cat\ncategory miku -> character", store=store)

        paths = export_bulk_preview(importer, tmp_path / "preview")

        affected = pl.read_csv(paths["affected_tags"])
        assert affected.to_dicts() == [
            {"tag": "cat", "category": "general", "post_count": 0},
            {"tag": "kitten", "category": "general", "post_count": 1},
            {"tag": "miku", "category": "character", "post_count": 0},
        ]
        summary = dict(pl.read_csv(paths["summary"]).iter_rows())
        assert summary == {"commands": 2, "affected_tags": 3, "estimated_update_count": 1}

    def test_empty_script(self, store: TagStore, tmp_path: Path) -> None:
        importer = BulkUpdateImporter("", store=store)
        paths = export_bulk_preview(importer, tmp_path)
        assert paths["affected_tags"] is None
        assert paths["summary"].exists()

    def test_frame_schema(self, store: TagStore) -> None:
        frame = affected_tags_frame(BulkUpdateImporter("", store=store))
        assert frame.columns == ["tag", "category", "post_count"]
        assert frame.is_empty()
