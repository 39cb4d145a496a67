from __future__ import annotations

from pathlib import Path

import pytest

from mailroom.errors import UnsafePathError
from mailroom.utils import (
    env_bool,
    env_int,
    expand_env,
    is_absolute_path,
    load_yaml_file,
    normalize_path,
    parse_env_bool,
    resolve_within,
    safe_relative_path,
    validate_relative_path,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("a/b", "a/b"),
        ("a\\b\\c", "a/b/c"),
        ("//a///b//", "a/b"),
        ("  spaced/name  ", "spaced/name"),
        ("./pkg", "pkg"),
        ("a/./b/.", "a/b"),
        (".", ""),
        ("plan..v2/.hidden", "plan..v2/.hidden"),
        ("", ""),
        ("   ", ""),
    ],
)
def test_normalize_path(value: str, expected: str) -> None:
    assert normalize_path(value) == expected


def test_is_absolute_path() -> None:
    assert is_absolute_path("/etc")
    assert is_absolute_path("\\share")
    assert is_absolute_path("C:\\Users")
    assert not is_absolute_path("docs/a.txt")


@pytest.mark.parametrize(
    "value, fragment",
    [
        ("../up", "parent directory"),
        ("a/../../up", "parent directory"),
        ("a\\..\\up", "parent directory"),
        ("/abs", "should be relative"),
        ("bad?name", "invalid characters"),
    ],
)
def test_validate_relative_path_rejects(value: str, fragment: str) -> None:
    assert fragment in validate_relative_path(value)


def test_validate_relative_path_accepts() -> None:
    assert validate_relative_path("docs/plan..v2.pdf") is None
    assert validate_relative_path("") is None


def test_safe_relative_path() -> None:
    assert safe_relative_path("docs\\plan.pdf") == "docs/plan.pdf"
    with pytest.raises(UnsafePathError):
        safe_relative_path("../x")


def test_resolve_within(tmp_path: Path) -> None:
    assert resolve_within(tmp_path, "a/b.txt") == (tmp_path / "a" / "b.txt").resolve()
    with pytest.raises(UnsafePathError):
        resolve_within(tmp_path, "../outside")


def test_resolve_within_rejects_symlink_escape(tmp_path: Path) -> None:
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(UnsafePathError):
        resolve_within(root, "link/secret.txt")


def test_parse_env_bool() -> None:
    assert parse_env_bool("Yes") is True
    assert parse_env_bool(" off ") is False
    assert parse_env_bool("maybe") is None
    assert parse_env_bool(None) is None


def test_env_helpers(monkeypatch) -> None:
    monkeypatch.setenv("MAILROOM_FLAG", "1")
    monkeypatch.setenv("MAILROOM_COUNT", " 7 ")
    monkeypatch.setenv("MAILROOM_BAD", "seven")
    assert env_bool("MAILROOM_FLAG") is True
    assert env_int("MAILROOM_COUNT") == 7
    assert env_int("MAILROOM_BAD") is None
    assert env_int("MAILROOM_UNSET_FOR_TEST") is None


def test_expand_env_nested(monkeypatch) -> None:
    monkeypatch.setenv("MAILROOM_HOME", "/srv/mail")
    data = {"a": "${MAILROOM_HOME}/x", "b": ["$MAILROOM_HOME"], "c": 3}
    assert expand_env(data) == {"a": "/srv/mail/x", "b": ["/srv/mail"], "c": 3}


def test_load_yaml_file_empty_document(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_yaml_file(path) == {}
