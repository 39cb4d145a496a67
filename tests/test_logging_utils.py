from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from mailroom.logging_utils import (
    LogBlockBuilder,
    _coerce_items,
    _stringify,
    configure_logging,
    render_fields_block,
    render_section_block,
)


class TestCoerceItems:
    def test_dict(self) -> None:
        assert _coerce_items({"a": 1, "b": 2}) == [("a", 1), ("b", 2)]

    def test_sequence_preserves_order(self) -> None:
        assert _coerce_items([("z", 1), ("a", 2)]) == [("z", 1), ("a", 2)]


class TestStringify:
    def test_none_is_empty(self) -> None:
        assert _stringify(None) == ""

    def test_strings_are_stripped(self) -> None:
        assert _stringify("  padded  ") == "padded"

    def test_lists_are_joined(self) -> None:
        assert _stringify(["a", "b"]) == "a, b"

    def test_sets_are_sorted(self) -> None:
        assert _stringify({"c", "a", "b"}) == "a, b, c"


class TestRenderFieldsBlock:
    def test_title_underline_and_fields(self) -> None:
        text = render_fields_block("Peer Added", {"Peer": "alice", "Groups": ["team"]})
        lines = text.splitlines()
        assert lines[0] == ""
        assert lines[1] == "Peer Added"
        assert lines[2] == "-" * len("Peer Added")
        assert "Peer" in lines[3] and lines[3].endswith(": alice")
        assert lines[4].endswith(": team")

    def test_without_padding(self) -> None:
        text = render_fields_block("Title", {"Key": "value"}, pad_top=False)
        assert text.splitlines()[0] == "Title"

    def test_long_values_wrap(self) -> None:
        text = render_fields_block("Wrap", {"Detail": "word " * 60})
        assert len(text.splitlines()) > 4

    def test_empty_fields(self) -> None:
        assert render_fields_block("Only Title", {}) == "\nOnly Title\n----------"


def test_render_section_block() -> None:
    text = render_section_block("Recap", [("Errors", ["one", "two"]), ("Warnings", [])])
    assert "Errors:" in text
    assert "    - one" in text
    assert "Warnings:" in text
    assert "(none)" in text


def test_builder_mixes_fields_and_sections() -> None:
    builder = LogBlockBuilder("Run Recap", pad_top=False)
    builder.add_fields({"Processed": 3})
    builder.add_section("Errors", ["boom"])
    rendered = builder.render()
    assert rendered.startswith("Run Recap\n---------")
    assert rendered.endswith("- boom")


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        yield
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)

    def test_installs_rich_handler_once(self) -> None:
        configure_logging(logging.INFO)
        configure_logging("debug")
        installed = [h for h in logging.getLogger().handlers if getattr(h, "_mailroom_handler", False)]
        assert len(installed) == 1
        assert isinstance(installed[0], RichHandler)
        assert installed[0].level == logging.DEBUG

    def test_file_handler_writes_messages(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "mailroom.log"
        configure_logging(logging.WARNING, log_file)
        logging.getLogger("mailroom.test").debug("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "written to file" in log_file.read_text(encoding="utf-8")
