from __future__ import annotations

import os
import re
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional

import yaml

from .errors import UnsafePathError

# Boolean true/false string values
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})

INVALID_PATH_CHARS = re.compile(r'[<>:"|?*]')
_WINDOWS_DRIVE = re.compile(r"^[a-zA-Z]:")


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: expand_env(val) for key, val in value.items()}
    return value


def load_yaml_file(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return expand_env(data)


def parse_env_bool(value: Optional[str]) -> Optional[bool]:
    """Parse a boolean from an environment variable string.

    Returns None if value is None or not a recognized boolean string.
    """
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def env_bool(name: str) -> Optional[bool]:
    return parse_env_bool(os.getenv(name))


def env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def normalize_path(value: str) -> str:
    """Normalize a user supplied relative path to forward-slash form.

    Backslashes become slashes and empty or ``.`` segments are dropped, so
    ``./pkg//a/`` and ``pkg/a`` name the same mailbox location.
    """
    if not value or not value.strip():
        return ""
    parts = value.strip().replace("\\", "/").split("/")
    return "/".join(part for part in parts if part not in ("", "."))


def is_absolute_path(value: str) -> bool:
    return value.startswith(("/", "\\")) or bool(_WINDOWS_DRIVE.match(value))


def validate_relative_path(value: str, *, label: str = "Path") -> Optional[str]:
    """Return a description of why ``value`` is unsafe, or None when it is usable.

    Empty values are allowed; callers decide what an empty path means.
    """
    if not value or not value.strip():
        return None
    if INVALID_PATH_CHARS.search(value):
        return f'{label} contains invalid characters (< > : " | ? *)'
    if is_absolute_path(value.strip()):
        return f"{label} should be relative"
    if ".." in PurePosixPath(normalize_path(value)).parts:
        return f"{label} cannot contain parent directory references (..)"
    return None


def safe_relative_path(value: str, *, label: str = "Path") -> str:
    """Validate and normalize a relative path, raising ``UnsafePathError``."""
    problem = validate_relative_path(value, label=label)
    if problem:
        raise UnsafePathError(value, problem)
    return normalize_path(value)


def resolve_within(root: Path, relative: str, *, label: str = "Path") -> Path:
    """Join ``relative`` onto ``root`` and refuse results outside of it."""
    cleaned = safe_relative_path(relative, label=label)
    base = root.resolve()
    candidate = (base / cleaned).resolve(strict=False) if cleaned else base
    if not candidate.is_relative_to(base):
        raise UnsafePathError(relative, f"{label} escapes {base}")
    return candidate
