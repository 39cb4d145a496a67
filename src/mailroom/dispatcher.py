from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from rich.progress import Progress

from .config import Settings
from .errors import CatastrophicFailure
from .groups import RecipientResolver, resolve_groups
from .logging_utils import render_fields_block
from .models import DesiredSource, Entry, Peer, SyncResult
from .planner import DistributionPlan, DistributionPlanner, TimedStat
from .reconciler import ReconcileOutcome, reconcile_mailbox
from .run_summary import log_run_recap
from .store import DataStore
from .utils import ensure_directory

LOGGER = logging.getLogger(__name__)


class Dispatcher:
    """Runs a full dissemination pass: plan every entry, reconcile every mailbox."""

    def __init__(self, settings: Settings, store: Optional[DataStore] = None) -> None:
        self.settings = settings
        self.store = store or DataStore(settings)

    def _enumerate(self) -> tuple[list[Peer], list[Entry]]:
        try:
            peers = self.store.list_peers()
            entries = self.store.list_entries()
        except OSError as exc:
            raise CatastrophicFailure(str(exc)) from exc
        return peers, entries

    def build_plan(self, peers: list[Peer], entries: list[Entry], result: SyncResult) -> DistributionPlan:
        resolver = RecipientResolver(resolve_groups(peers))
        with TimedStat(self.settings.source_stat_timeout) as timed_stat:
            planner = DistributionPlanner(
                resolver,
                aliases=[peer.alias for peer in peers],
                resolve_source=self.store.resolve_data_path,
                stat=timed_stat,
                is_report=self.settings.is_report,
            )
            return planner.build(entries, result)

    def _reconcile_peer(self, alias: str, desired: dict[str, DesiredSource]) -> ReconcileOutcome:
        mailbox = self.store.mailbox_dir(alias)
        dry_run = self.settings.dry_run
        with self.store.locks.hold(alias):
            if not dry_run:
                ensure_directory(mailbox)
            return reconcile_mailbox(mailbox, desired, dry_run=dry_run)

    def _reconcile_all(self, plan: DistributionPlan, aliases: list[str], result: SyncResult) -> None:
        if not aliases:
            return
        workers = max(1, min(self.settings.max_workers, len(aliases)))
        with Progress(disable=not LOGGER.isEnabledFor(logging.INFO)) as progress:
            task_id = progress.add_task("Reconciling", total=len(aliases))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mailroom-peer") as executor:
                future_map = {
                    executor.submit(self._reconcile_peer, alias, plan.files_for(alias)): alias
                    for alias in aliases
                }
                for future in as_completed(future_map):
                    alias = future_map[future]
                    try:
                        outcome = future.result()
                    except OSError as exc:
                        message = f"Failed to reconcile mailbox for peer {alias}: {exc}"
                        LOGGER.error(render_fields_block("Peer Not Reconciled", {"Peer": alias, "Error": exc}))
                        result.register_error(message)
                    else:
                        result.reports_distributed += outcome.written
                        result.reports_removed += outcome.removed
                        result.errors.extend(outcome.errors)
                        if outcome.written or outcome.removed:
                            LOGGER.debug(
                                render_fields_block(
                                    "Mailbox Reconciled",
                                    {
                                        "Peer": alias,
                                        "Written": outcome.written,
                                        "Removed": outcome.removed,
                                        "Pruned Directories": outcome.pruned,
                                    },
                                )
                            )
                    progress.advance(task_id, 1)

    def run_sync(self) -> SyncResult:
        """Recompute every mailbox from the current entries and peers.

        Isolated faults end up in ``SyncResult.errors``. When peers or entries
        cannot be listed at all the result carries a single ``Sync error``.
        """
        result = SyncResult()
        started = time.perf_counter()

        try:
            peers, entries = self._enumerate()
        except CatastrophicFailure as exc:
            LOGGER.error(render_fields_block("Sync Aborted", {"Data Root": self.settings.data_root, "Error": exc}))
            result.register_error(f"Sync error: {exc}")
            return result

        LOGGER.debug(
            render_fields_block(
                "Sync Started",
                {
                    "Data Root": self.settings.data_root,
                    "Peers": len(peers),
                    "Entries": len(entries),
                    "Dry Run": self.settings.dry_run,
                },
            )
        )

        plan = self.build_plan(peers, entries, result)
        self._reconcile_all(plan, [peer.alias for peer in peers], result)

        log_run_recap(
            result,
            time.perf_counter() - started,
            peers=len(peers),
            dry_run=self.settings.dry_run,
        )
        return result


def run_sync(settings: Settings, store: Optional[DataStore] = None) -> SyncResult:
    return Dispatcher(settings, store).run_sync()


__all__ = ["Dispatcher", "run_sync"]
