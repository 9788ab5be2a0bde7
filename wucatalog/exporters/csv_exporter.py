"""Export search results as CSV."""

from __future__ import annotations

import csv
from pathlib import Path

from ..models import SearchResult

CSV_COLUMNS = [
    "update_id",
    "kb_number",
    "title",
    "products",
    "classification",
    "last_updated",
    "version",
    "size_in_bytes",
    "size_formatted",
    "architecture",
    "is_superseded",
    "download_urls",
]


def export_csv(result: SearchResult, output_path: Path) -> None:
    """Write one row per update in result order; list fields are joined with '; '."""
    rows = []
    for update in result.updates:
        data = update.to_dict()
        row = {}
        for col in CSV_COLUMNS:
            value = data.get(col)
            if isinstance(value, list):
                value = "; ".join(value)
            row[col] = "" if value is None else value
        rows.append(row)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        writer.writerows(rows)
