"""Export search results as structured JSON."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from ..models import SearchResult


def export_json(result: SearchResult, output_path: Path) -> None:
    """Write search metadata plus one object per update."""
    criteria = result.criteria
    output = {
        "metadata": {
            "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "query": criteria.query,
            "success": result.success,
            "state": result.state.value,
            "total_count": result.total_count,
            "total_pages": result.total_pages,
            "duration_seconds": round(result.duration, 3),
        },
        "updates": [],
    }

    if result.error_message:
        output["metadata"]["error"] = result.error_message
    if result.warnings:
        output["metadata"]["warnings"] = result.warnings

    for update in result.updates:
        entry = update.to_dict()
        # Remove empty values
        entry = {k: v for k, v in entry.items() if v not in (None, [], "")}
        output["updates"].append(entry)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(output, f, indent=2, ensure_ascii=False)
