"""エイリアス/インプリケーションと post_count の健全性チェックを行い、TSVレポートを出力する。"""

from __future__ import annotations

import argparse
import csv
import sqlite3
from collections.abc import Iterable, Sequence
from pathlib import Path

from loguru import logger

from booru_tag_engine.bulk.relationships import implication_graph
from booru_tag_engine.core.store import TagStore


def _write_tsv(path: Path, header: Sequence[str], rows: Iterable[Sequence[object]]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, delimiter="\t")
        writer.writerow(list(header))
        count = 0
        for r in rows:
            writer.writerow(["" if v is None else v for v in r])
            count += 1
    return count


def _fetchall(con: sqlite3.Connection, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
    cur = con.execute(sql, params)
    return cur.fetchall()


def find_implication_cycles(graph: dict[str, set[str]]) -> list[list[str]]:
    """有効インプリケーションの循環を列挙する（各循環は最小の名前から始まる形に正規化）."""
    cycles: set[tuple[str, ...]] = set()
    visiting: list[str] = []
    done: set[str] = set()

    def visit(node: str) -> None:
        if node in visiting:
            cycle = visiting[visiting.index(node) :]
            start = cycle.index(min(cycle))
            cycles.add(tuple(cycle[start:] + cycle[:start]))
            return
        if node in done:
            return
        visiting.append(node)
        for nxt in sorted(graph.get(node, ())):
            visit(nxt)
        visiting.pop()
        done.add(node)

    for node in sorted(graph):
        visit(node)
    return [list(c) for c in sorted(cycles)]


def run_relationship_health_checks(db_path: Path, out_dir: Path, fix_post_counts: bool = False) -> Path:
    db_path = Path(db_path)
    out_dir = Path(out_dir)
    if not db_path.exists():
        raise FileNotFoundError(f"Database does not exist: {db_path}")
    out_dir.mkdir(parents=True, exist_ok=True)

    with TagStore.open(db_path) as store:
        con = store.conn

        # エイリアスのチェーン（consequent が別の有効エイリアスの antecedent）
        chains = _fetchall(
            con,
            """
            SELECT a.antecedent_name, a.consequent_name, b.consequent_name
            FROM TAG_ALIASES a
            JOIN TAG_ALIASES b ON b.antecedent_name = a.consequent_name AND b.status = 'active'
            WHERE a.status = 'active'
            ORDER BY a.antecedent_name
            """,
        )
        chains_count = _write_tsv(out_dir / "alias_chains.tsv", ["antecedent", "consequent", "next_consequent"], chains)

        duplicates = _fetchall(
            con,
            """
            SELECT antecedent_name, COUNT(*) AS n
            FROM TAG_ALIASES
            WHERE status = 'active'
            GROUP BY antecedent_name
            HAVING n > 1
            ORDER BY n DESC, antecedent_name
            """,
        )
        duplicates_count = _write_tsv(out_dir / "duplicate_active_aliases.tsv", ["antecedent", "count"], duplicates)

        cycles = find_implication_cycles(implication_graph(store))
        cycles_count = _write_tsv(out_dir / "implication_cycles.tsv", ["cycle"], [[" -> ".join(c)] for c in cycles])

        aliased = _fetchall(
            con,
            """
            SELECT i.antecedent_name, i.consequent_name, a.antecedent_name AS aliased_tag, a.consequent_name
            FROM TAG_IMPLICATIONS i
            JOIN TAG_ALIASES a
                ON a.status = 'active'
                AND a.antecedent_name IN (i.antecedent_name, i.consequent_name)
            WHERE i.status = 'active'
            ORDER BY i.antecedent_name, i.consequent_name
            """,
        )
        aliased_count = _write_tsv(
            out_dir / "implications_on_aliased_tags.tsv",
            ["antecedent", "consequent", "aliased_tag", "alias_consequent"],
            aliased,
        )

        drift = _fetchall(
            con,
            """
            SELECT t.name, t.post_count, COUNT(pt.post_id) AS actual
            FROM TAGS t
            LEFT JOIN POST_TAGS pt ON pt.tag_id = t.tag_id
            GROUP BY t.tag_id
            HAVING t.post_count != actual
            ORDER BY t.name
            """,
        )
        drift_count = _write_tsv(out_dir / "post_count_drift.tsv", ["tag", "post_count", "actual"], drift)

        fixed = 0
        if fix_post_counts and drift_count:
            with store.begin():
                fixed = store.regenerate_post_counts()
            logger.info(f"Regenerated post counts: {fixed} tags fixed")

        summary_out = out_dir / "relationship_health_summary.tsv"
        _write_tsv(
            summary_out,
            ["metric", "value"],
            [
                ("db_path", str(db_path)),
                ("alias_chains", chains_count),
                ("duplicate_active_aliases", duplicates_count),
                ("implication_cycles", cycles_count),
                ("implications_on_aliased_tags", aliased_count),
                ("post_count_drift", drift_count),
                ("post_counts_fixed", fixed),
            ],
        )
    return summary_out


def main() -> None:
    p = argparse.ArgumentParser(description="Check alias/implication health and write TSV reports.")
    p.add_argument("--db", type=Path, required=True, help="Path to SQLite DB file")
    p.add_argument("--out-dir", type=Path, required=True, help="Output directory for TSV reports")
    p.add_argument("--fix-post-counts", action="store_true", help="Regenerate drifted TAGS.post_count values")
    args = p.parse_args()

    summary = run_relationship_health_checks(args.db, args.out_dir, fix_post_counts=args.fix_post_counts)
    print(f"Wrote health reports: {summary.parent}")


if __name__ == "__main__":
    main()
