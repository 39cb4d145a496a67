from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from textwrap import wrap
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_WRAP_WIDTH = 100
DEFAULT_LABEL_WIDTH = 20
DEFAULT_INDENT = "    "
FILE_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

FieldMapping = Union[Mapping[str, object], Sequence[tuple[str, object]]]


def _coerce_items(fields: FieldMapping) -> list[tuple[str, object]]:
    if isinstance(fields, Mapping):
        return list(fields.items())
    return list(fields)


def _stringify(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return ", ".join(_stringify(item) for item in items)
    return str(value)


def _wrap_lines(text: str, width: int) -> list[str]:
    lines: list[str] = []
    for raw_line in text.splitlines() or [""]:
        lines.extend(wrap(raw_line, width=width) or [""])
    return lines


class LogBlockBuilder:
    """Build a titled, aligned block of ``label: value`` lines for log output."""

    def __init__(
        self,
        title: str,
        *,
        wrap_width: int = DEFAULT_WRAP_WIDTH,
        label_width: int = DEFAULT_LABEL_WIDTH,
        indent: str = DEFAULT_INDENT,
        pad_top: bool = True,
    ) -> None:
        self.title = title
        self.wrap_width = wrap_width
        self.label_width = label_width
        self.indent = indent
        self.lines: list[str] = [""] if pad_top else []
        self.lines.append(title)
        self.lines.append("-" * len(title))

    def add_fields(self, fields: FieldMapping | None) -> None:
        items = _coerce_items(fields) if fields else []
        if not items:
            return
        label_width = max(min(max(len(str(key)) for key, _ in items), self.label_width), 6)
        value_width = max(self.wrap_width - len(self.indent) - label_width - 2, 30)
        for key, value in items:
            first, *rest = _wrap_lines(_stringify(value), value_width)
            self.lines.append(f"{self.indent}{str(key):<{label_width}}: {first}")
            for continuation in rest:
                self.lines.append(f"{self.indent}{'':<{label_width}}  {continuation}")

    def add_section(self, heading: str, items: Iterable[object], *, empty_label: str = "(none)") -> None:
        if self.lines and self.lines[-1] != "":
            self.lines.append("")
        self.lines.append(f"{heading}:")
        materialized = [item for item in items if item is not None]
        if not materialized:
            self.lines.append(f"{self.indent}{empty_label}")
            return
        bullet = self.indent + "- "
        width = max(self.wrap_width - len(bullet), 24)
        for item in materialized:
            first, *rest = _wrap_lines(_stringify(item), width)
            self.lines.append(f"{bullet}{first}")
            for continuation in rest:
                self.lines.append(f"{self.indent}  {continuation}")

    def render(self) -> str:
        return "\n".join(self.lines).rstrip()


def render_fields_block(title: str, fields: FieldMapping, *, pad_top: bool = True) -> str:
    builder = LogBlockBuilder(title, pad_top=pad_top)
    builder.add_fields(fields)
    return builder.render()


def render_section_block(
    title: str,
    sections: Sequence[tuple[str, Sequence[object]]],
    *,
    pad_top: bool = True,
) -> str:
    builder = LogBlockBuilder(title, pad_top=pad_top)
    for heading, items in sections:
        builder.add_section(heading, items)
    return builder.render()


def configure_logging(
    level: int | str = logging.INFO,
    log_file: Path | None = None,
    *,
    console: Console | None = None,
) -> None:
    """Install a rich console handler (and optionally a file handler) on the root logger.

    Calling it again replaces the handlers installed by a previous call.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_mailroom_handler", False):
            root.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    console_handler._mailroom_handler = True  # type: ignore[attr-defined]
    root.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        file_handler.setLevel(logging.DEBUG)
        file_handler._mailroom_handler = True  # type: ignore[attr-defined]
        root.addHandler(file_handler)

    root.setLevel(min(level, logging.DEBUG) if log_file is not None else level)
