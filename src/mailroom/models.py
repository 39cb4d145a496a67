from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union


@dataclass(slots=True)
class Entry:
    filename: str
    content: str
    timestamp: dt.datetime
    size: int
    is_pinned: bool = False

    @property
    def stem(self) -> str:
        return Path(self.filename).stem

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix


@dataclass(slots=True)
class PeerConfig:
    public_key: str = ""
    groups: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "PeerConfig":
        raw_groups = data.get("groups") or []
        groups = [str(group) for group in raw_groups] if isinstance(raw_groups, list) else []
        return cls(public_key=str(data.get("publicKey") or ""), groups=groups)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"publicKey": self.public_key}
        if self.groups:
            payload["groups"] = list(self.groups)
        return payload


@dataclass(slots=True)
class Peer:
    alias: str
    public_key: str
    groups: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ParsedMetadata:
    to: List[str] = field(default_factory=list)
    except_: List[str] = field(default_factory=list)
    source_files: List[str] = field(default_factory=list)
    destination_path: Optional[str] = None
    clean_content: str = ""

    @property
    def has_directive(self) -> bool:
        return bool(self.to or self.except_)


@dataclass(frozen=True, slots=True)
class ContentSource:
    """Desired mailbox file whose bytes are an inline string."""

    data: str


@dataclass(frozen=True, slots=True)
class FileSource:
    """Desired mailbox file copied from a file under the data root."""

    path: Path


DesiredSource = Union[ContentSource, FileSource]


@dataclass(frozen=True, slots=True)
class StagedFile:
    relative_path: str
    source: DesiredSource


@dataclass(frozen=True, slots=True)
class SimplePlacement:
    report_path: str


@dataclass(frozen=True, slots=True)
class PackagePlacement:
    folder: str
    report_path: str
    attachments: tuple[StagedFile, ...] = ()


Placement = Union[SimplePlacement, PackagePlacement]


@dataclass(slots=True)
class SyncResult:
    reports_processed: int = 0
    reports_distributed: int = 0
    reports_removed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def register_processed(self) -> None:
        self.reports_processed += 1

    def register_error(self, message: str) -> None:
        self.errors.append(message)

    def register_warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def as_dict(self) -> Dict[str, object]:
        return {
            "reportsProcessed": self.reports_processed,
            "reportsDistributed": self.reports_distributed,
            "reportsRemoved": self.reports_removed,
            "errors": list(self.errors),
        }
