from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

import pytest

from mailroom.config import Settings
from mailroom.store import DataStore


class DataRoot:
    """Small builder for a data root laid out the way the store expects."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.settings = Settings(data_root=root, max_workers=2, source_stat_timeout=5.0)
        self.store = DataStore(self.settings)

    def add_peer(self, alias: str, groups: Iterable[str] = (), *, public_key: str | None = None) -> Path:
        peer_dir = self.root / "peers" / alias
        (peer_dir / "incoming").mkdir(parents=True, exist_ok=True)
        (peer_dir / "outgoing").mkdir(parents=True, exist_ok=True)
        key = public_key or (alias.encode("utf-8").hex() * 64)[:64]
        payload = {"publicKey": key, "groups": list(groups)}
        (peer_dir / "hinter.config.json").write_text(json.dumps(payload), encoding="utf-8")
        return peer_dir

    def write_entry(self, filename: str, content: str, *, pinned: bool = False) -> Path:
        directory = self.root / "entries" / ("pinned" if pinned else "")
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        path.write_text(content, encoding="utf-8", newline="")
        return path

    def write_source(self, relative: str, data: bytes = b"payload") -> Path:
        path = self.root.joinpath(*relative.split("/"))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def mailbox(self, alias: str) -> Path:
        return self.root / "peers" / alias / "outgoing"

    def mailbox_files(self, alias: str) -> set[str]:
        root = self.mailbox(alias)
        return {path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file()}


@pytest.fixture
def data_root(tmp_path: Path) -> DataRoot:
    return DataRoot(tmp_path / "data")
