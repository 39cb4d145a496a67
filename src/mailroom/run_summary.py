"""Run recaps and message summaries for sync runs.

The dispatcher logs every error where it happens; the recap at the end of a
run repeats only the counters plus a short, de-duplicated digest of the
errors and warnings so that a long run stays readable at INFO level.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, List

from .logging_utils import LogBlockBuilder

if TYPE_CHECKING:
    from .models import SyncResult

LOGGER = logging.getLogger(__name__)


def has_activity(result: SyncResult) -> bool:
    """True when a run wrote, removed or complained about anything."""
    return bool(
        result.reports_distributed
        or result.reports_removed
        or result.errors
        or result.warnings
    )


def summarize_messages(entries: List[str], *, limit: int = 5) -> List[str]:
    """Group duplicate messages and keep the ``limit`` most frequent ones.

    Args:
        entries: Messages to summarize.
        limit: Maximum number of distinct messages to show.

    Returns:
        Summary lines, most frequent first, with a hint when some were cut.
    """
    if not entries:
        return []
    counter = Counter(entries)
    ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    lines: List[str] = []
    for text, count in ordered[:limit]:
        prefix = f"{count}× " if count > 1 else ""
        lines.append(f"{prefix}{text}")
    remaining = len(ordered) - limit
    if remaining > 0:
        lines.append(f"... {remaining} more (use --verbose for full list)")
    return lines


def format_run_recap(
    result: SyncResult,
    duration: float,
    *,
    peers: int,
    dry_run: bool = False,
) -> str:
    title = "Run Recap (dry run)" if dry_run else "Run Recap"
    builder = LogBlockBuilder(title)
    builder.add_fields(
        {
            "Duration": f"{duration:.2f}s",
            "Peers": peers,
            "Processed": result.reports_processed,
            "Distributed": result.reports_distributed,
            "Removed": result.reports_removed,
            "Errors": len(result.errors),
            "Warnings": len(result.warnings),
        }
    )
    if result.errors:
        builder.add_section("Errors", summarize_messages(result.errors))
    if result.warnings:
        builder.add_section("Warnings", summarize_messages(result.warnings))
    return builder.render()


def log_run_recap(
    result: SyncResult,
    duration: float,
    *,
    peers: int,
    dry_run: bool = False,
) -> None:
    """Log the end-of-run recap; quiet runs are only logged at DEBUG."""
    level = logging.INFO if has_activity(result) else logging.DEBUG
    if not LOGGER.isEnabledFor(level):
        return
    LOGGER.log(level, format_run_recap(result, duration, peers=peers, dry_run=dry_run))


__all__ = ["format_run_recap", "has_activity", "log_run_recap", "summarize_messages"]
