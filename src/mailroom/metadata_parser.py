"""Routing header parsing and generation for entries.

Entries carry their routing directives in a short header ahead of the body.
Two header shapes are understood:

* a fenced frontmatter block::

      ---
      to:
        [
          'alice',
          'group:team'
        ]
      except: ['bob']
      sourceFiles: ['docs/plan.pdf']
      destinationPath: 'q1-plan'
      ---

      body...

* a single inline line followed by a blank line::

      to: ["alice"] except: [] sourcePath: 'docs/plan.pdf' destinationPath: ''

      body...

Header text is read by a small scanner that understands keys, bracketed
comma lists, block sequences (``- item``) and quoted or bare scalars.
Parsing never raises: anything malformed inside a recognized header yields
an empty directive and the untouched original text.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .models import ParsedMetadata

LOGGER = logging.getLogger(__name__)

FENCE = "---"
LIST_FIELDS = frozenset({"to", "except", "sourceFiles"})
SCALAR_FIELDS = frozenset({"sourcePath", "destinationPath"})
KNOWN_FIELDS = LIST_FIELDS | SCALAR_FIELDS
QUOTE_CHARS = "'\""
_KEY_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-")


class HeaderSyntaxError(ValueError):
    """Raised by the scanner; never escapes ``parse_metadata``."""


@dataclass
class _HeaderScanner:
    text: str
    inline: bool = False
    pos: int = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_spaces(self) -> None:
        while self.peek() in (" ", "\t", "\r") and not self.at_end():
            self.pos += 1

    def skip_whitespace(self) -> None:
        while not self.at_end():
            if self.peek().isspace():
                self.pos += 1
            elif self.peek() == "#":
                line_end = self.text.find("\n", self.pos)
                self.pos = len(self.text) if line_end == -1 else line_end
            else:
                return

    def read_key(self) -> str:
        start = self.pos
        while not self.at_end() and self.peek() in _KEY_CHARS:
            self.pos += 1
        key = self.text[start:self.pos]
        if not key or self.peek() != ":":
            raise HeaderSyntaxError(f"expected 'key:' at offset {start}")
        self.pos += 1
        return key

    def read_value(self, key: str) -> list[str] | str:
        self.skip_spaces()
        if self.peek() == "\n":
            # YAML style: the value may continue on the following lines.
            lookahead = self.pos
            while lookahead < len(self.text) and self.text[lookahead].isspace():
                lookahead += 1
            following = self.text[lookahead:lookahead + 2]
            head = following[:1]
            if head == "[" or (head and head in QUOTE_CHARS):
                self.pos = lookahead
            elif following in ("- ", "-\n") and not self.inline:
                return self.read_block_sequence()
            else:
                return ""
        if self.peek() == "[":
            return self.read_bracketed_list()
        if key in LIST_FIELDS and self.inline:
            raise HeaderSyntaxError(f"'{key}' must be a bracketed list")
        return self.read_scalar()

    def read_bracketed_list(self) -> list[str]:
        start = self.pos + 1
        end = self.text.find("]", start)
        if end == -1:
            raise HeaderSyntaxError(f"unterminated list at offset {self.pos}")
        self.pos = end + 1
        return split_list_items(self.text[start:end])

    def read_block_sequence(self) -> list[str]:
        items: list[str] = []
        while True:
            line_start = self.pos + 1 if self.peek() == "\n" else self.pos
            line_end = self.text.find("\n", line_start)
            line = self.text[line_start:] if line_end == -1 else self.text[line_start:line_end]
            stripped = line.strip()
            if not stripped.startswith("-"):
                return items
            item = _unquote(stripped[1:].strip())
            if item:
                items.append(item)
            self.pos = len(self.text) if line_end == -1 else line_end

    def read_scalar(self) -> str:
        char = self.peek()
        if char and char in QUOTE_CHARS:
            end = self.text.find(char, self.pos + 1)
            if end == -1:
                raise HeaderSyntaxError(f"unterminated string at offset {self.pos}")
            value = self.text[self.pos + 1:end]
            self.pos = end + 1
            return value
        start = self.pos
        stops = (" ", "\t", "\n") if self.inline else ("\n",)
        while not self.at_end() and self.peek() not in stops:
            self.pos += 1
        return self.text[start:self.pos].strip()


def _unquote(value: str) -> str:
    return value.strip().strip(QUOTE_CHARS).strip()


def split_list_items(inner: str) -> list[str]:
    """Split the text between brackets into trimmed, unquoted, non-empty items."""
    items = (_unquote(part) for part in inner.split(","))
    return [item for item in items if item]


def _parse_header_fields(text: str, *, inline: bool) -> dict[str, list[str] | str]:
    scanner = _HeaderScanner(text, inline=inline)
    fields: dict[str, list[str] | str] = {}
    while True:
        scanner.skip_whitespace()
        if scanner.at_end():
            return fields
        key = scanner.read_key()
        fields[key] = scanner.read_value(key)


def _as_list(value: list[str] | str | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    item = _unquote(value)
    return [item] if item else []


def _build_metadata(fields: dict[str, list[str] | str], clean_content: str) -> ParsedMetadata:
    source_files = _as_list(fields.get("sourceFiles"))
    if "sourceFiles" not in fields:
        legacy = fields.get("sourcePath")
        if isinstance(legacy, str) and legacy.strip():
            source_files = [legacy.strip()]
    destination = fields.get("destinationPath")
    destination_path = destination.strip() if isinstance(destination, str) and destination.strip() else None
    return ParsedMetadata(
        to=_as_list(fields.get("to")),
        except_=_as_list(fields.get("except")),
        source_files=source_files,
        destination_path=destination_path,
        clean_content=clean_content,
    )


def _split_frontmatter(content: str) -> tuple[str, str] | None:
    first_break = content.find("\n")
    if first_break == -1 or content[:first_break].rstrip() != FENCE:
        return None
    header_start = first_break + 1
    position = header_start
    while position <= len(content):
        line_end = content.find("\n", position)
        line = content[position:] if line_end == -1 else content[position:line_end]
        if line.rstrip() == FENCE:
            header = content[header_start:max(position - 1, header_start)]
            body = "" if line_end == -1 else content[line_end + 1:]
            if body.startswith("\r\n"):
                body = body[2:]
            elif body.startswith("\n"):
                body = body[1:]
            return header, body
        if line_end == -1:
            return None
        position = line_end + 1
    return None


def _split_inline(content: str) -> tuple[str, str] | None:
    line_end = content.find("\n")
    if line_end == -1:
        return None
    first_line = content[:line_end]
    key = first_line.split(":", 1)[0].strip()
    if key not in KNOWN_FIELDS or ":" not in first_line:
        return None
    remainder = content[line_end + 1:]
    if remainder.startswith("\r\n"):
        return first_line, remainder[2:]
    if remainder.startswith("\n"):
        return first_line, remainder[1:]
    return None


def parse_metadata(content: str) -> ParsedMetadata:
    """Extract routing directives from ``content``.

    Returns an empty directive with ``clean_content`` equal to ``content``
    when no header is present or the header cannot be read.
    """
    for splitter, inline in ((_split_frontmatter, False), (_split_inline, True)):
        try:
            parts = splitter(content)
            if parts is None:
                continue
            header, body = parts
            fields = _parse_header_fields(header, inline=inline)
            return _build_metadata(fields, body)
        except Exception as exc:  # noqa: BLE001 - headers fail open
            LOGGER.debug("Ignoring malformed routing header: %s", exc)
            return ParsedMetadata(clean_content=content)
    return ParsedMetadata(clean_content=content)


def _quote(value: str) -> str:
    return f'"{value}"' if "'" in value else f"'{value}'"


def _format_list(values: Sequence[str]) -> str:
    if not values:
        return "[]"
    inner = ",\n    ".join(_quote(value) for value in values)
    return f"\n  [\n    {inner}\n  ]"


def generate_header(
    to: Sequence[str],
    except_: Sequence[str],
    source_files: Sequence[str] = (),
    destination_path: str | None = None,
) -> str:
    """Render the canonical frontmatter for the given routing fields.

    Returns an empty string when every field is empty so headerless entries
    stay headerless.
    """
    if not to and not except_ and not source_files and not destination_path:
        return ""
    lines = [
        FENCE,
        f"to:{' ' if not to else ''}{_format_list(to)}",
        f"except:{' ' if not except_ else ''}{_format_list(except_)}",
        f"sourceFiles:{' ' if not source_files else ''}{_format_list(source_files)}",
        f"destinationPath: {_quote(destination_path or '')}",
        FENCE,
        "",
        "",
    ]
    return "\n".join(lines)


__all__ = ["HeaderSyntaxError", "generate_header", "parse_metadata", "split_list_items"]
