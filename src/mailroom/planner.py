"""Desired-state planning: which file every peer's mailbox should contain.

For each report entry with a routing directive the planner decides where the
report lands (``SimplePlacement`` at the mailbox root, or a
``PackagePlacement`` folder holding the report and its attachments), stages
attachments from the data root, and records the result for every recipient.
Nothing here touches a mailbox; the reconciler applies the plan.
"""

from __future__ import annotations

import logging
import os
import stat as stat_module
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import MailroomError, SourceFileUnavailable, UnsafePathError
from .file_discovery import gather_attachment_files
from .groups import RecipientResolver
from .logging_utils import render_fields_block
from .metadata_parser import parse_metadata
from .models import (
    ContentSource,
    DesiredSource,
    Entry,
    FileSource,
    PackagePlacement,
    ParsedMetadata,
    Placement,
    SimplePlacement,
    StagedFile,
    SyncResult,
)
from .utils import safe_relative_path

LOGGER = logging.getLogger(__name__)

FILES_DIRNAME = "files"

StatFn = Callable[[Path], os.stat_result]
ResolveFn = Callable[[str], Path]


class TimedStat:
    """``os.stat`` with an upper bound on how long a single call may block.

    Calls run on a small worker pool so that an unreachable network mount
    surfaces as ``SourceFileUnavailable`` instead of stalling the run. A
    running ``os.stat`` cannot be interrupted, so after a timeout the pool
    holding the stuck worker is abandoned and later calls get a fresh one.
    Abandoned workers finish (or hang) on their own.
    """

    def __init__(self, timeout: float, *, max_workers: int = 2) -> None:
        self.timeout = timeout
        self.max_workers = max_workers
        self.abandoned = 0
        self._executor = self._new_executor()

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="mailroom-stat")

    def __call__(self, path: Path) -> os.stat_result:
        future = self._executor.submit(os.stat, path)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            if not future.cancel():
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = self._new_executor()
                self.abandoned += 1
            raise SourceFileUnavailable(path, f"stat timed out after {self.timeout:g}s") from exc
        except OSError as exc:
            raise SourceFileUnavailable(path, exc.strerror or exc) from exc

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> TimedStat:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def destination_folder(metadata: ParsedMetadata) -> str:
    """Normalized ``destinationPath``; ``""`` when it names the mailbox root or is unset.

    Raises ``UnsafePathError`` when the destination would leave the mailbox.
    """
    if not metadata.destination_path:
        return ""
    return safe_relative_path(metadata.destination_path, label="Destination path")


def report_base(entry: Entry, metadata: ParsedMetadata) -> str:
    """Folder or file stem used for an entry inside a mailbox."""
    return destination_folder(metadata) or entry.stem


def plan_placement(entry: Entry, metadata: ParsedMetadata) -> Placement:
    """Choose simple or package placement for an entry's report body."""
    destination = destination_folder(metadata)
    base = destination or entry.stem
    if destination or metadata.source_files:
        return PackagePlacement(folder=base, report_path=f"{base}/{entry.filename}")
    return SimplePlacement(report_path=f"{base}{entry.extension}")


def stage_source(folder: str, source: str, *, resolve: ResolveFn, stat: StatFn) -> list[StagedFile]:
    """Stage one declared attachment (a file or a whole directory) below ``folder/files``."""
    try:
        absolute = resolve(source)
    except UnsafePathError as exc:
        raise SourceFileUnavailable(source, exc.reason) from exc
    info = stat(absolute)
    if stat_module.S_ISDIR(info.st_mode):
        prefix = f"{folder}/{FILES_DIRNAME}/{absolute.name}"
        return [
            StagedFile(relative_path=f"{prefix}/{relative}", source=FileSource(path))
            for relative, path in gather_attachment_files(absolute)
        ]
    return [StagedFile(relative_path=f"{folder}/{FILES_DIRNAME}/{absolute.name}", source=FileSource(absolute))]


@dataclass
class DistributionPlan:
    """Per-peer desired file sets, keyed by mailbox-relative path."""

    desired: dict[str, dict[str, DesiredSource]] = field(default_factory=dict)
    origins: dict[tuple[str, str], str] = field(default_factory=dict)

    @classmethod
    def for_peers(cls, aliases: Iterable[str]) -> DistributionPlan:
        return cls(desired={alias: {} for alias in aliases})

    def files_for(self, alias: str) -> dict[str, DesiredSource]:
        return self.desired.get(alias, {})

    def stage(self, alias: str, staged: StagedFile, origin: str) -> str | None:
        """Record ``staged`` for ``alias``; later calls win.

        Unknown aliases are ignored. Returns a warning message when the path
        was already claimed by a different entry or source.
        """
        files = self.desired.get(alias)
        if files is None:
            return None
        key = (alias, staged.relative_path)
        previous_source = files.get(staged.relative_path)
        previous_origin = self.origins.get(key)
        files[staged.relative_path] = staged.source
        self.origins[key] = origin
        if previous_source is None or (previous_origin == origin and previous_source == staged.source):
            return None
        return (
            f"Path collision for peer {alias}: {staged.relative_path} from {origin} "
            f"replaces the copy from {previous_origin}"
        )


class DistributionPlanner:
    def __init__(
        self,
        resolver: RecipientResolver,
        *,
        aliases: Iterable[str],
        resolve_source: ResolveFn,
        stat: StatFn = os.stat,
        is_report: Callable[[str], bool] = lambda name: name.lower().endswith(".md"),
    ) -> None:
        self.resolver = resolver
        self.resolve_source = resolve_source
        self.stat = stat
        self.is_report = is_report
        self.plan = DistributionPlan.for_peers(aliases)

    def build(self, entries: Iterable[Entry], result: SyncResult) -> DistributionPlan:
        for entry in entries:
            if not self.is_report(entry.filename):
                continue
            result.register_processed()
            try:
                self.plan_entry(entry, result)
            except MailroomError as exc:
                message = f"Error processing entry {entry.filename}: {exc}"
                LOGGER.error(render_fields_block("Entry Not Distributed", {"Entry": entry.filename, "Error": exc}))
                result.register_error(message)
        return self.plan

    def plan_entry(self, entry: Entry, result: SyncResult) -> None:
        metadata = parse_metadata(entry.content)
        if not metadata.has_directive:
            LOGGER.debug(render_fields_block("Skipping Local Entry", {"Entry": entry.filename}))
            return

        recipients = self.resolver.final_recipients(metadata.to, metadata.except_)
        placement = plan_placement(entry, metadata)
        staged = [StagedFile(placement.report_path, ContentSource(metadata.clean_content))]

        if isinstance(placement, PackagePlacement):
            attachments: list[StagedFile] = []
            for source in metadata.source_files:
                try:
                    attachments.extend(
                        stage_source(placement.folder, source, resolve=self.resolve_source, stat=self.stat)
                    )
                except SourceFileUnavailable as exc:
                    LOGGER.error(
                        render_fields_block(
                            "Attachment Unavailable",
                            {"Entry": entry.filename, "Source": source, "Error": exc.reason},
                        )
                    )
                    result.register_error(
                        f"Error accessing source file {exc.path} for entry {entry.filename}: {exc.reason}"
                    )
            placement = replace(placement, attachments=tuple(attachments))
            staged.extend(placement.attachments)

        LOGGER.debug(
            render_fields_block(
                "Planned Entry",
                {
                    "Entry": entry.filename,
                    "Mode": "package" if isinstance(placement, PackagePlacement) else "simple",
                    "Recipients": sorted(recipients) or "(none)",
                    "Files": len(staged),
                },
            )
        )
        for alias in sorted(recipients):
            for item in staged:
                warning = self.plan.stage(alias, item, entry.filename)
                if warning:
                    LOGGER.warning(render_fields_block("Mailbox Path Collision", {"Detail": warning}))
                    result.register_warning(warning)
