"""File-backed access to the data root.

Layout below ``Settings.data_root``::

    entries/*.md                    regular entries
    entries/pinned/*.md             pinned entries
    peers/<alias>/hinter.config.json
    peers/<alias>/incoming/         received reports (never touched by sync)
    peers/<alias>/outgoing/         the mailbox kept in sync with the entries

The dissemination engine only needs ``list_peers``, ``list_entries``,
``resolve_data_path`` and ``mailbox_dir``. The remaining mutators are the
small peer/group/entry operations used by the command line.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
import shutil
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from .config import Settings
from .errors import UnsafePathError
from .groups import ALL_GROUP, resolve_groups
from .logging_utils import render_fields_block
from .metadata_parser import generate_header
from .models import Entry, Peer, PeerConfig
from .utils import ensure_directory, resolve_within, validate_relative_path

LOGGER = logging.getLogger(__name__)

PINNED_DIRNAME = "pinned"
INCOMING_DIRNAME = "incoming"

PUBLIC_KEY_PATTERN = re.compile(r"^[a-f0-9]{64}$")
ALIAS_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
GROUP_NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
ENTRY_SUFFIX_PATTERN = re.compile(r"^[A-Za-z0-9_-]*$")
RESERVED_ALIASES = frozenset({"all", "admin", "root", "system", "config", "api", "www"})


def validate_alias(alias: str) -> str | None:
    """Return why ``alias`` cannot name a peer mailbox, or None when it can."""
    if not alias or not alias.strip():
        return "Alias cannot be empty"
    if len(alias) < 2:
        return "Alias must be at least 2 characters long"
    if len(alias) > 50:
        return "Alias cannot be longer than 50 characters"
    if "-" in alias:
        return "Alias cannot contain hyphens"
    if not ALIAS_PATTERN.match(alias):
        return "Alias can only contain letters, numbers, and underscores"
    if alias[0].isdigit():
        return "Alias cannot start with a number"
    if alias.lower() in RESERVED_ALIASES:
        return f'"{alias}" is a reserved name'
    return None


def validate_public_key(public_key: str) -> str | None:
    if not public_key or not public_key.strip():
        return "Public key cannot be empty"
    if not PUBLIC_KEY_PATTERN.match(public_key):
        return "Public key must be 64 lowercase hexadecimal characters"
    return None


def validate_group_name(name: str) -> str | None:
    if name == ALL_GROUP:
        return 'The group name "all" is reserved'
    if not GROUP_NAME_PATTERN.match(name or ""):
        return "Invalid group name format. Use lowercase letters, numbers, and single hyphens."
    return None


def validate_entry_suffix(suffix: str) -> str | None:
    if not ENTRY_SUFFIX_PATTERN.match(suffix or ""):
        return "Entry suffix may only contain letters, numbers, underscores and hyphens"
    return None


class AliasLocks:
    """Per-alias mutual exclusion for operations keyed by a mailbox directory name."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, alias: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(alias)
            if lock is None:
                lock = self._locks[alias] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *aliases: str) -> Iterator[None]:
        """Hold the locks of every given alias, acquired in sorted order."""
        locks = [self._lock_for(alias) for alias in sorted(set(aliases))]
        acquired: list[threading.RLock] = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


def _timestamp_id(now: dt.datetime | None = None) -> str:
    moment = now or dt.datetime.now(dt.timezone.utc)
    return moment.strftime("%Y%m%d%H%M%S")


def _decode_entry(path: Path, raw: bytes) -> str:
    """Decode entry bytes as UTF-8 keeping line endings as written.

    Invalid byte sequences become U+FFFD so one damaged entry still syncs.
    """
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        LOGGER.warning("Entry %s is not valid UTF-8 (%s); undecodable bytes replaced", path.name, exc.reason)
        return raw.decode("utf-8", errors="replace")


class DataStore:
    def __init__(self, settings: Settings, *, locks: AliasLocks | None = None) -> None:
        self.settings = settings
        self.locks = locks or AliasLocks()

    # Paths

    @property
    def data_root(self) -> Path:
        return self.settings.data_root

    @property
    def peers_root(self) -> Path:
        return self.settings.peers_root

    @property
    def entries_root(self) -> Path:
        return self.settings.entries_root

    def peer_dir(self, alias: str) -> Path:
        return self.peers_root / alias

    def mailbox_dir(self, alias: str) -> Path:
        return self.peer_dir(alias) / self.settings.mailbox_dir

    def _config_path(self, alias: str) -> Path:
        return self.peer_dir(alias) / self.settings.peer_config_filename

    def resolve_data_path(self, relative: str) -> Path:
        """Resolve a data-root relative path, refusing absolute paths and ``..``."""
        resolved = resolve_within(self.data_root, relative, label="Source path")
        if resolved == self.data_root.resolve():
            raise UnsafePathError(relative, "Source path refers to the data root itself")
        return resolved

    # Peers

    def get_peer_config(self, alias: str) -> PeerConfig:
        """Read a peer's config; unreadable configs yield an empty one."""
        path = self._config_path(alias)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning(render_fields_block("Could Not Read Peer Config", {"Peer": alias, "Error": exc}))
            return PeerConfig()
        if not isinstance(payload, dict):
            return PeerConfig()
        return PeerConfig.from_dict(payload)

    def update_peer_config(self, alias: str, config: PeerConfig) -> None:
        with self.locks.hold(alias):
            path = self._config_path(alias)
            ensure_directory(path.parent)
            path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")

    def list_peers(self) -> list[Peer]:
        """List every peer directory with a readable config, sorted by alias.

        A missing peers directory means no peers. Any other failure to list
        the directory propagates.
        """
        if not self.peers_root.exists():
            return []
        peers: list[Peer] = []
        for child in sorted(self.peers_root.iterdir(), key=lambda item: item.name):
            if not child.is_dir():
                continue
            config_path = self._config_path(child.name)
            try:
                payload = json.loads(config_path.read_text(encoding="utf-8"))
                if not isinstance(payload, dict):
                    raise ValueError("config must be a JSON object")
            except (OSError, ValueError) as exc:
                LOGGER.warning(
                    render_fields_block(
                        "Skipping Peer",
                        {"Peer": child.name, "Config": config_path, "Error": exc},
                    )
                )
                continue
            config = PeerConfig.from_dict(payload)
            peers.append(Peer(alias=child.name, public_key=config.public_key, groups=config.groups))
        return peers

    def add_peer(self, alias: str, public_key: str) -> Peer:
        problem = validate_alias(alias) or validate_public_key(public_key)
        if problem:
            raise ValueError(problem)
        with self.locks.hold(alias):
            existing = self.list_peers()
            if self.peer_dir(alias).exists() or any(peer.alias.lower() == alias.lower() for peer in existing):
                raise ValueError(f"Peer '{alias}' already exists")
            if any(peer.public_key == public_key for peer in existing):
                raise ValueError("A peer with this public key already exists")
            ensure_directory(self.peer_dir(alias) / INCOMING_DIRNAME)
            ensure_directory(self.mailbox_dir(alias))
            self.update_peer_config(alias, PeerConfig(public_key=public_key))
        LOGGER.info(render_fields_block("Peer Added", {"Peer": alias}))
        return Peer(alias=alias, public_key=public_key)

    def remove_peer(self, alias: str) -> None:
        with self.locks.hold(alias):
            shutil.rmtree(self.peer_dir(alias), ignore_errors=True)
        LOGGER.info(render_fields_block("Peer Removed", {"Peer": alias}))

    def rename_peer(self, alias: str, new_alias: str) -> None:
        """Rename a peer, moving its whole directory (config and mailboxes)."""
        problem = validate_alias(new_alias)
        if problem:
            raise ValueError(problem)
        with self.locks.hold(alias, new_alias):
            source = self.peer_dir(alias)
            target = self.peer_dir(new_alias)
            if not source.is_dir():
                raise ValueError(f"Peer '{alias}' does not exist")
            if target.exists():
                raise ValueError(f"Peer '{new_alias}' already exists")
            source.rename(target)
        LOGGER.info(render_fields_block("Peer Renamed", {"From": alias, "To": new_alias}))

    def update_public_key(self, alias: str, public_key: str) -> None:
        problem = validate_public_key(public_key)
        if problem:
            raise ValueError(problem)
        if any(peer.public_key == public_key and peer.alias != alias for peer in self.list_peers()):
            raise ValueError("A peer with this public key already exists")
        with self.locks.hold(alias):
            config = self.get_peer_config(alias)
            config.public_key = public_key
            self.update_peer_config(alias, config)

    # Groups

    def list_groups(self) -> dict[str, set[str]]:
        return resolve_groups(self.list_peers())

    def create_group(self, name: str, aliases: Sequence[str]) -> None:
        problem = validate_group_name(name)
        if problem:
            raise ValueError(problem)
        peers = self.list_peers()
        if name in resolve_groups(peers):
            raise ValueError(f"A group named '{name}' already exists")
        known = {peer.alias for peer in peers}
        unknown = [alias for alias in aliases if alias not in known]
        if unknown:
            raise ValueError(f"Invalid peer aliases: {', '.join(unknown)}")
        for alias in dict.fromkeys(aliases):
            with self.locks.hold(alias):
                config = self.get_peer_config(alias)
                if name not in config.groups:
                    config.groups.append(name)
                    self.update_peer_config(alias, config)
        LOGGER.info(render_fields_block("Group Created", {"Group": name, "Peers": list(aliases)}))

    # Entries

    def _read_entries(self, directory: Path, *, pinned: bool) -> list[Entry]:
        entries: list[Entry] = []
        for path in sorted(directory.iterdir(), key=lambda item: item.name):
            if not path.is_file() or not self.settings.is_report(path.name):
                continue
            content = _decode_entry(path, path.read_bytes())
            stat = path.stat()
            entries.append(
                Entry(
                    filename=path.name,
                    content=content,
                    timestamp=dt.datetime.fromtimestamp(stat.st_mtime),
                    size=stat.st_size,
                    is_pinned=pinned,
                )
            )
        return entries

    def list_entries(self) -> list[Entry]:
        """Regular and pinned entries, newest filename first.

        A missing entries directory means no entries; any other read failure
        propagates.
        """
        entries: list[Entry] = []
        if self.entries_root.is_dir():
            entries.extend(self._read_entries(self.entries_root, pinned=False))
        pinned_dir = self.entries_root / PINNED_DIRNAME
        if pinned_dir.is_dir():
            entries.extend(self._read_entries(pinned_dir, pinned=True))
        entries.sort(key=lambda entry: entry.filename, reverse=True)
        return entries

    def create_entry(
        self,
        content: str,
        *,
        suffix: str = "",
        pinned: bool = False,
        to: Sequence[str] = (),
        except_: Sequence[str] = (),
        source_files: Sequence[str] = (),
        destination_path: str | None = None,
        now: dt.datetime | None = None,
    ) -> str:
        """Write a new timestamp-named entry with its routing header; return the filename."""
        if not content:
            raise ValueError("Content is required")
        problem = validate_entry_suffix(suffix)
        if problem:
            raise ValueError(problem)
        for source in source_files:
            problem = validate_relative_path(source, label="Source path")
            if problem:
                raise ValueError(problem)
        if destination_path:
            problem = validate_relative_path(destination_path, label="Destination path")
            if problem:
                raise ValueError(problem)
        extension = self.settings.report_extensions[0]
        filename = f"{_timestamp_id(now)}{suffix}{extension}"
        target_dir = self.entries_root / PINNED_DIRNAME if pinned else self.entries_root
        ensure_directory(target_dir)
        header = generate_header(list(to), list(except_), list(source_files), destination_path)
        (target_dir / filename).write_text(header + content, encoding="utf-8", newline="")
        return filename
