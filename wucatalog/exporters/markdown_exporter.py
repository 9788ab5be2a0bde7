"""Export search results as a human-readable Markdown summary."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from ..models import SearchResult


def _escape(text: str) -> str:
    return text.replace("|", "\\|")


def export_markdown(result: SearchResult, output_path: Path) -> None:
    """Write a Markdown overview with stats and one table row per update."""
    architectures = Counter(u.architecture for u in result.updates)
    arch_summary = ", ".join(f"{arch}: {count}" for arch, count in architectures.most_common()) or "-"

    lines = [
        f"# Windows Update Catalog - {_escape(result.criteria.query)}",
        "",
        "## Overview",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Status | {result.state.value} |",
        f"| Updates | {result.total_count} |",
        f"| Pages | {result.total_pages} |",
        f"| Architectures | {arch_summary} |",
        f"| Duration | {result.duration:.1f}s |",
        "",
    ]

    if result.error_message:
        lines.append(f"**Error:** {_escape(result.error_message)}")
        lines.append("")

    lines.append("## Updates")
    lines.append("")
    lines.append("| KB | Title | Classification | Last Updated | Size | Arch | Download |")
    lines.append("|----|-------|----------------|--------------|------|------|----------|")

    for update in result.updates:
        updated = update.last_updated.isoformat() if update.last_updated else "-"
        download = f"[link]({update.download_urls[0]})" if update.download_urls else "-"
        lines.append(
            f"| {update.kb_number or '-'} | {_escape(update.title)} "
            f"| {_escape(update.classification) or '-'} | {updated} "
            f"| {update.size_formatted or update.size_human()} | {update.architecture} | {download} |"
        )

    if result.warnings:
        lines.append("")
        lines.append("## Warnings")
        lines.append("")
        for warning in result.warnings:
            lines.append(f"- {warning}")

    lines.append("")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
