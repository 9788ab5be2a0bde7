"""Export unique KB numbers as plain text, one per line."""

from __future__ import annotations

from pathlib import Path

from ..models import SearchResult


def export_text(result: SearchResult, output_path: Path) -> None:
    """Write all unique KB numbers sorted numerically, one per line."""
    kb_numbers = {u.kb_number for u in result.updates if u.kb_number}
    sorted_kbs = sorted(kb_numbers, key=lambda kb: int(kb[2:]))

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        for kb in sorted_kbs:
            f.write(kb + "\n")
