"""Recursive file listings for attachment sources and mailbox trees.

Both the planner (walking a directory attachment) and the reconciler
(listing what a mailbox currently holds) need the same thing: every file
below a root, keyed by its forward-slash path relative to that root.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from .logging_utils import render_fields_block

LOGGER = logging.getLogger(__name__)


def skip_reason_for_source_file(path: Path) -> str | None:
    """Return why an attachment file should not be distributed, if any."""
    name = path.name
    if name.startswith("._") and len(name) > 2:
        return "macOS resource fork (._ prefix)"
    return None


def to_relative_key(path: Path, root: Path) -> str:
    return PurePosixPath(*path.relative_to(root).parts).as_posix()


def walk_files(root: Path, *, include_dir_links: bool = False) -> Iterator[tuple[str, Path]]:
    """Yield ``(relative_key, absolute_path)`` for every file below ``root``.

    Directory symlinks are not descended into; with ``include_dir_links``
    they are yielded as entries of their own. Unreadable subdirectories are
    logged and skipped. A missing root yields nothing.
    """
    if not root.is_dir():
        return

    def _on_error(exc: OSError) -> None:
        LOGGER.warning(
            render_fields_block(
                "Unreadable Directory",
                {"Path": getattr(exc, "filename", root), "Error": exc.strerror or exc},
            )
        )

    for directory, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        base = Path(directory)
        names = list(filenames)
        if include_dir_links:
            names.extend(name for name in dirnames if (base / name).is_symlink())
        for filename in sorted(names):
            path = base / filename
            yield to_relative_key(path, root), path


def gather_attachment_files(source_dir: Path) -> Iterator[tuple[str, Path]]:
    """Like ``walk_files`` but drops files that should never be distributed."""
    for key, path in walk_files(source_dir):
        reason = skip_reason_for_source_file(path)
        if reason:
            LOGGER.debug(
                render_fields_block(
                    "Skipping Attachment File",
                    {"Source": path, "Reason": reason},
                )
            )
            continue
        yield key, path


def list_mailbox(mailbox_root: Path) -> dict[str, Path]:
    """Return the files currently present in a mailbox keyed by relative path.

    Symlinked directories are listed as entries so they can be removed.
    """
    return dict(walk_files(mailbox_root, include_dir_links=True))


def prune_empty_directories(root: Path, *, keep_root: bool = True) -> list[Path]:
    """Remove directories below ``root`` that are empty, children before parents.

    Returns the directories that were removed. Directories that cannot be
    listed or removed are left in place.
    """
    removed: list[Path] = []
    if not root.is_dir():
        return removed
    for directory, _dirnames, _filenames in os.walk(root, topdown=False):
        path = Path(directory)
        if keep_root and path == root:
            continue
        try:
            if any(path.iterdir()):
                continue
            path.rmdir()
        except OSError as exc:
            LOGGER.debug(
                render_fields_block(
                    "Could Not Prune Directory",
                    {"Path": path, "Error": exc},
                )
            )
            continue
        removed.append(path)
    return removed
