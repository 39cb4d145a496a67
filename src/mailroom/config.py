from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import env_bool, env_int, load_yaml_file

DEFAULT_CONFIG_FILENAME = "mailroom.yaml"
DEFAULT_DATA_ROOT = "./hinter-core-data"

ENV_DATA_ROOT = "MAILROOM_DATA_ROOT"
ENV_DRY_RUN = "MAILROOM_DRY_RUN"
ENV_MAX_WORKERS = "MAILROOM_MAX_WORKERS"


@dataclass
class Settings:
    data_root: Path
    entries_dir: str = "entries"
    peers_dir: str = "peers"
    mailbox_dir: str = "outgoing"
    peer_config_filename: str = "hinter.config.json"
    report_extensions: list[str] = field(default_factory=lambda: [".md"])
    dry_run: bool = False
    max_workers: int = 4
    source_stat_timeout: float = 10.0
    log_level: str = "INFO"
    log_file: Path | None = None

    @property
    def entries_root(self) -> Path:
        return self.data_root / self.entries_dir

    @property
    def peers_root(self) -> Path:
        return self.data_root / self.peers_dir

    def is_report(self, filename: str) -> bool:
        suffix = Path(filename).suffix.lower()
        return suffix in {ext.lower() for ext in self.report_extensions}


def _ensure_string_list(value: Any, *, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    result: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValueError(f"'{field_name}' entries must be non-empty strings")
        result.append(item.strip())
    return result


def _normalize_extensions(values: list[str]) -> list[str]:
    return [value if value.startswith(".") else f".{value}" for value in values]


def _positive_int(value: Any, *, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer") from exc
    if number < 1:
        raise ValueError(f"'{field_name}' must be at least 1")
    return number


def _positive_float(value: Any, *, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be a number") from exc
    if number <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")
    return number


def _clean_component(value: Any, *, field_name: str, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip().strip("/\\")
    if not text or text in {".", ".."} or "/" in text or "\\" in text:
        raise ValueError(f"'{field_name}' must be a single directory or file name")
    return text


def _build_settings(data: dict[str, Any], *, base_dir: Path | None = None) -> Settings:
    if not isinstance(data, dict):
        raise ValueError("'settings' must be provided as a mapping")

    data_root = Path(str(data.get("data_root") or DEFAULT_DATA_ROOT)).expanduser()
    if not data_root.is_absolute() and base_dir is not None:
        data_root = base_dir / data_root

    extensions = _normalize_extensions(
        _ensure_string_list(data.get("report_extensions", [".md"]), field_name="settings.report_extensions")
    )
    if not extensions:
        raise ValueError("'settings.report_extensions' must list at least one extension")

    log_file_raw = data.get("log_file")
    log_file = Path(str(log_file_raw)).expanduser() if log_file_raw else None

    return Settings(
        data_root=data_root,
        entries_dir=_clean_component(data.get("entries_dir"), field_name="settings.entries_dir", default="entries"),
        peers_dir=_clean_component(data.get("peers_dir"), field_name="settings.peers_dir", default="peers"),
        mailbox_dir=_clean_component(data.get("mailbox_dir"), field_name="settings.mailbox_dir", default="outgoing"),
        peer_config_filename=_clean_component(
            data.get("peer_config_filename"),
            field_name="settings.peer_config_filename",
            default="hinter.config.json",
        ),
        report_extensions=extensions,
        dry_run=bool(data.get("dry_run", False)),
        max_workers=_positive_int(data.get("max_workers", 4), field_name="settings.max_workers"),
        source_stat_timeout=_positive_float(
            data.get("source_stat_timeout", 10.0), field_name="settings.source_stat_timeout"
        ),
        log_level=str(data.get("log_level", "INFO")).upper(),
        log_file=log_file,
    )


def apply_env_overrides(settings: Settings) -> Settings:
    """Apply ``MAILROOM_*`` environment variables on top of loaded settings."""
    data_root = os.getenv(ENV_DATA_ROOT)
    if data_root and data_root.strip():
        settings.data_root = Path(data_root.strip()).expanduser()
    dry_run = env_bool(ENV_DRY_RUN)
    if dry_run is not None:
        settings.dry_run = dry_run
    max_workers = env_int(ENV_MAX_WORKERS)
    if max_workers is not None and max_workers >= 1:
        settings.max_workers = max_workers
    return settings


def load_config(path: Path | None = None) -> Settings:
    """Load settings from ``path`` (or defaults when ``path`` is None).

    Relative ``data_root`` values are resolved against the config file's
    directory. Raises ``FileNotFoundError`` for an explicit path that does not
    exist and ``ValueError`` for invalid values.
    """
    if path is None:
        settings = _build_settings({})
    else:
        data = load_yaml_file(path)
        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping")
        settings = _build_settings(data.get("settings", {}) or {}, base_dir=path.parent)
    return apply_env_overrides(settings)
