from __future__ import annotations

import datetime as dt
import json
import threading

import pytest

from mailroom.errors import UnsafePathError
from mailroom.metadata_parser import parse_metadata
from mailroom.models import PeerConfig
from mailroom.store import AliasLocks, validate_alias, validate_group_name, validate_public_key

KEY_A = "a" * 64
KEY_B = "b" * 64


class TestValidators:
    @pytest.mark.parametrize(
        "alias, expected",
        [
            ("alice", None),
            ("a", "at least 2"),
            ("x" * 51, "longer than 50"),
            ("has-hyphen", "hyphens"),
            ("has space", "letters, numbers"),
            ("1abc", "start with a number"),
            ("admin", "reserved"),
            ("", "empty"),
        ],
    )
    def test_validate_alias(self, alias: str, expected) -> None:
        problem = validate_alias(alias)
        if expected is None:
            assert problem is None
        else:
            assert expected in problem

    def test_validate_public_key(self) -> None:
        assert validate_public_key(KEY_A) is None
        assert validate_public_key("A" * 64) is not None
        assert validate_public_key("a" * 63) is not None
        assert validate_public_key("") is not None

    def test_validate_group_name(self) -> None:
        assert validate_group_name("team-one") is None
        assert validate_group_name("all") is not None
        assert validate_group_name("Team") is not None
        assert validate_group_name("double--hyphen") is not None


class TestPeers:
    def test_add_peer_creates_layout(self, data_root) -> None:
        store = data_root.store
        store.add_peer("alice", KEY_A)

        peer_dir = data_root.root / "peers" / "alice"
        assert (peer_dir / "incoming").is_dir()
        assert (peer_dir / "outgoing").is_dir()
        payload = json.loads((peer_dir / "hinter.config.json").read_text(encoding="utf-8"))
        assert payload == {"publicKey": KEY_A}

    def test_add_peer_rejects_duplicates(self, data_root) -> None:
        store = data_root.store
        store.add_peer("alice", KEY_A)
        with pytest.raises(ValueError, match="already exists"):
            store.add_peer("alice", KEY_B)
        with pytest.raises(ValueError, match="public key"):
            store.add_peer("bob", KEY_A)

    def test_add_peer_rejects_bad_key(self, data_root) -> None:
        with pytest.raises(ValueError):
            data_root.store.add_peer("alice", "not-a-key")

    def test_list_peers_sorted_and_skips_broken(self, data_root) -> None:
        data_root.add_peer("zed", groups=["team"])
        data_root.add_peer("amy")
        broken = data_root.root / "peers" / "broken"
        broken.mkdir()
        (data_root.root / "peers" / "stray.txt").write_text("x", encoding="utf-8")

        peers = data_root.store.list_peers()

        assert [peer.alias for peer in peers] == ["amy", "zed"]
        assert peers[1].groups == ["team"]

    def test_list_peers_without_peers_directory(self, data_root) -> None:
        assert data_root.store.list_peers() == []

    def test_rename_peer_moves_mailboxes(self, data_root) -> None:
        data_root.add_peer("alice")
        (data_root.mailbox("alice") / "kept.md").write_text("x", encoding="utf-8")

        data_root.store.rename_peer("alice", "alicia")

        assert not (data_root.root / "peers" / "alice").exists()
        assert (data_root.mailbox("alicia") / "kept.md").exists()

    def test_rename_peer_refuses_existing_target(self, data_root) -> None:
        data_root.add_peer("alice")
        data_root.add_peer("bob")
        with pytest.raises(ValueError, match="already exists"):
            data_root.store.rename_peer("alice", "bob")

    def test_rename_missing_peer(self, data_root) -> None:
        with pytest.raises(ValueError, match="does not exist"):
            data_root.store.rename_peer("ghost", "spirit")

    def test_remove_peer(self, data_root) -> None:
        data_root.add_peer("alice")
        data_root.store.remove_peer("alice")
        assert not (data_root.root / "peers" / "alice").exists()

    def test_update_public_key(self, data_root) -> None:
        data_root.add_peer("alice", groups=["team"])
        data_root.store.update_public_key("alice", KEY_B)
        config = data_root.store.get_peer_config("alice")
        assert config == PeerConfig(public_key=KEY_B, groups=["team"])

    def test_get_peer_config_missing_file(self, data_root) -> None:
        assert data_root.store.get_peer_config("nobody") == PeerConfig()


class TestGroups:
    def test_create_group_updates_member_configs(self, data_root) -> None:
        data_root.add_peer("alice")
        data_root.add_peer("bob")

        data_root.store.create_group("team", ["alice", "bob"])

        groups = data_root.store.list_groups()
        assert groups["team"] == {"alice", "bob"}
        assert groups["all"] == {"alice", "bob"}

    def test_create_group_rejects_unknown_alias(self, data_root) -> None:
        data_root.add_peer("alice")
        with pytest.raises(ValueError, match="ghost"):
            data_root.store.create_group("team", ["alice", "ghost"])

    def test_create_group_rejects_existing(self, data_root) -> None:
        data_root.add_peer("alice", groups=["team"])
        with pytest.raises(ValueError, match="already exists"):
            data_root.store.create_group("team", ["alice"])

    def test_create_group_rejects_all(self, data_root) -> None:
        data_root.add_peer("alice")
        with pytest.raises(ValueError, match="reserved"):
            data_root.store.create_group("all", ["alice"])


class TestEntries:
    def test_list_entries_includes_pinned_newest_first(self, data_root) -> None:
        data_root.write_entry("20240101000000.md", "old")
        data_root.write_entry("20240301000000.md", "new")
        data_root.write_entry("20240201000000.md", "pinned", pinned=True)
        data_root.write_entry("notes.txt", "ignored")

        entries = data_root.store.list_entries()

        assert [entry.filename for entry in entries] == [
            "20240301000000.md",
            "20240201000000.md",
            "20240101000000.md",
        ]
        assert [entry.is_pinned for entry in entries] == [False, True, False]
        assert entries[0].content == "new"
        assert entries[0].size == 3

    def test_list_entries_without_entries_directory(self, data_root) -> None:
        assert data_root.store.list_entries() == []

    def test_create_entry_writes_header(self, data_root) -> None:
        now = dt.datetime(2024, 5, 6, 7, 8, 9)
        filename = data_root.store.create_entry(
            "Body\n",
            suffix="-weekly",
            to=["alice", "group:team"],
            except_=["bob"],
            source_files=["docs/plan.pdf"],
            destination_path="plans",
            now=now,
        )

        assert filename == "20240506070809-weekly.md"
        content = (data_root.root / "entries" / filename).read_text(encoding="utf-8")
        parsed = parse_metadata(content)
        assert parsed.to == ["alice", "group:team"]
        assert parsed.except_ == ["bob"]
        assert parsed.source_files == ["docs/plan.pdf"]
        assert parsed.destination_path == "plans"
        assert parsed.clean_content == "Body\n"

    def test_create_pinned_entry_without_routing(self, data_root) -> None:
        filename = data_root.store.create_entry("Body", pinned=True, now=dt.datetime(2024, 1, 1))
        path = data_root.root / "entries" / "pinned" / filename
        assert path.read_text(encoding="utf-8") == "Body"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"source_files": ["../outside.txt"]},
            {"source_files": ["/etc/passwd"]},
            {"destination_path": "bad|name"},
        ],
    )
    def test_create_entry_rejects_unsafe_paths(self, data_root, kwargs) -> None:
        with pytest.raises(ValueError):
            data_root.store.create_entry("Body", to=["alice"], **kwargs)

    @pytest.mark.parametrize("suffix", ["../../x", "/abs", "a\\b", "-ok?", ".."])
    def test_create_entry_rejects_unsafe_suffix(self, data_root, suffix: str) -> None:
        with pytest.raises(ValueError, match="Entry suffix"):
            data_root.store.create_entry("Body", suffix=suffix)
        assert not (data_root.root / "entries").exists()
        assert not (data_root.root / "x.md").exists()

    def test_list_entries_keeps_line_endings(self, data_root) -> None:
        data_root.write_entry("20240101.md", "one\r\ntwo\r\n")
        assert data_root.store.list_entries()[0].content == "one\r\ntwo\r\n"

    def test_list_entries_replaces_invalid_utf8(self, data_root) -> None:
        path = data_root.write_entry("20240101.md", "")
        path.write_bytes(b"caf\xe9\n")
        assert data_root.store.list_entries()[0].content == "caf�\n"

    def test_create_entry_requires_content(self, data_root) -> None:
        with pytest.raises(ValueError, match="Content is required"):
            data_root.store.create_entry("")


class TestResolveDataPath:
    def test_resolves_inside_root(self, data_root) -> None:
        data_root.root.mkdir(parents=True)
        resolved = data_root.store.resolve_data_path("docs/plan.pdf")
        assert resolved == (data_root.root / "docs" / "plan.pdf").resolve()

    @pytest.mark.parametrize("relative", ["../escape", "/etc/passwd", "docs/../../escape", "", "."])
    def test_rejects_escape_and_root(self, data_root, relative: str) -> None:
        data_root.root.mkdir(parents=True)
        with pytest.raises(UnsafePathError):
            data_root.store.resolve_data_path(relative)


class TestAliasLocks:
    def test_hold_is_reentrant_and_releases(self) -> None:
        locks = AliasLocks()
        with locks.hold("a", "b"):
            with locks.hold("a"):
                pass
        acquired = threading.Event()

        def worker() -> None:
            with locks.hold("b", "a"):
                acquired.set()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(timeout=5)
        assert acquired.is_set()

    def test_hold_releases_on_error(self) -> None:
        locks = AliasLocks()
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")
        assert locks._lock_for("a").acquire(blocking=False)
        locks._lock_for("a").release()

    def test_hold_blocks_other_threads(self) -> None:
        locks = AliasLocks()
        entered = threading.Event()
        with locks.hold("a"):
            thread = threading.Thread(target=lambda: (locks.hold("a").__enter__(), entered.set()))
            thread.daemon = True
            thread.start()
            assert not entered.wait(timeout=0.2)
        assert entered.wait(timeout=5)
