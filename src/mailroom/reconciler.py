"""Bring one mailbox tree in line with its desired-file-set.

A pass is always delete, then write, then prune. Deleting first means a file
written in this pass can never be removed by the same pass; pruning last
means directories emptied by deletes disappear while freshly written ones
survive.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import FilesystemFault
from .file_discovery import list_mailbox, prune_empty_directories
from .logging_utils import render_fields_block
from .models import ContentSource, DesiredSource, FileSource
from .utils import ensure_directory

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileOutcome:
    written: int = 0
    removed: int = 0
    pruned: int = 0
    errors: list[str] = field(default_factory=list)

    def register_fault(self, fault: FilesystemFault) -> None:
        self.errors.append(str(fault))


def needs_update(destination: Path, source: DesiredSource) -> bool:
    """Decide whether ``destination`` must be (re)written from ``source``.

    File sources compare modification time and size, content sources compare
    bytes. A destination that cannot be read or stat'ed always needs an
    update.
    """
    try:
        if isinstance(source, FileSource):
            source_stat = source.path.stat()
            destination_stat = destination.stat()
            return (
                source_stat.st_mtime > destination_stat.st_mtime
                or source_stat.st_size != destination_stat.st_size
            )
        return destination.read_bytes() != source.data.encode("utf-8")
    except OSError:
        return True


def write_desired_file(destination: Path, source: DesiredSource) -> None:
    ensure_directory(destination.parent)
    if isinstance(source, FileSource):
        shutil.copy2(source.path, destination)
    elif isinstance(source, ContentSource):
        destination.write_bytes(source.data.encode("utf-8"))
    else:  # pragma: no cover - exhaustive over DesiredSource
        raise TypeError(f"Unsupported source type: {type(source).__name__}")


def _delete_obsolete(
    mailbox_root: Path,
    actual: Mapping[str, Path],
    desired: Mapping[str, DesiredSource],
    outcome: ReconcileOutcome,
    *,
    dry_run: bool,
) -> None:
    for relative, path in actual.items():
        # symlinks are replaced by real files even at a desired path
        if relative in desired and not path.is_symlink():
            continue
        if dry_run:
            LOGGER.info(render_fields_block("Dry-Run: Would Remove", {"Mailbox": mailbox_root, "File": relative}))
            outcome.removed += 1
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            fault = FilesystemFault("delete", path, exc.strerror or exc)
            LOGGER.error(render_fields_block("Delete Failed", {"File": path, "Error": fault.reason}))
            outcome.register_fault(fault)
            continue
        LOGGER.debug(render_fields_block("Removed", {"Mailbox": mailbox_root, "File": relative}))
        outcome.removed += 1


def _write_changed(
    mailbox_root: Path,
    desired: Mapping[str, DesiredSource],
    outcome: ReconcileOutcome,
    *,
    dry_run: bool,
) -> None:
    for relative in sorted(desired):
        source = desired[relative]
        destination = mailbox_root.joinpath(*relative.split("/"))
        if not needs_update(destination, source):
            continue
        if dry_run:
            LOGGER.info(render_fields_block("Dry-Run: Would Write", {"Mailbox": mailbox_root, "File": relative}))
            outcome.written += 1
            continue
        try:
            write_desired_file(destination, source)
        except OSError as exc:
            fault = FilesystemFault("write", destination, exc.strerror or exc)
            LOGGER.error(render_fields_block("Write Failed", {"File": destination, "Error": fault.reason}))
            outcome.register_fault(fault)
            continue
        LOGGER.debug(render_fields_block("Written", {"Mailbox": mailbox_root, "File": relative}))
        outcome.written += 1


def reconcile_mailbox(
    mailbox_root: Path,
    desired: Mapping[str, DesiredSource],
    *,
    dry_run: bool = False,
) -> ReconcileOutcome:
    """Delete obsolete files, write changed ones, then prune empty directories.

    The mailbox root itself is never removed.
    """
    outcome = ReconcileOutcome()
    try:
        actual = list_mailbox(mailbox_root)
    except OSError as exc:
        outcome.register_fault(FilesystemFault("list", mailbox_root, exc.strerror or exc))
        return outcome

    _delete_obsolete(mailbox_root, actual, desired, outcome, dry_run=dry_run)
    _write_changed(mailbox_root, desired, outcome, dry_run=dry_run)
    if not dry_run:
        outcome.pruned = len(prune_empty_directories(mailbox_root, keep_root=True))
    return outcome


__all__ = ["ReconcileOutcome", "needs_update", "reconcile_mailbox", "write_desired_file"]
