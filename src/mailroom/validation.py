from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from jsonschema import Draft7Validator


@dataclass(slots=True)
class ValidationIssue:
    """Represents a single validation problem."""

    severity: str
    path: str
    message: str
    code: str
    line_number: Optional[int] = None
    fix_suggestion: Optional[str] = None


@dataclass(slots=True)
class ValidationReport:
    """Aggregates validation warnings and errors."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


_NAME_PATTERN = r"^[^/\\]+$"
_EXTENSION_PATTERN = r"^\.?[A-Za-z0-9_-]+$"

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "settings": {
            "type": "object",
            "properties": {
                "data_root": {"type": "string", "minLength": 1},
                "entries_dir": {"type": "string", "pattern": _NAME_PATTERN},
                "peers_dir": {"type": "string", "pattern": _NAME_PATTERN},
                "mailbox_dir": {"type": "string", "pattern": _NAME_PATTERN},
                "peer_config_filename": {"type": "string", "pattern": _NAME_PATTERN},
                "report_extensions": {
                    "oneOf": [
                        {
                            "type": "array",
                            "items": {"type": "string", "pattern": _EXTENSION_PATTERN},
                            "minItems": 1,
                        },
                        {"type": "string", "pattern": _EXTENSION_PATTERN},
                    ]
                },
                "dry_run": {"type": "boolean"},
                "max_workers": {"type": "integer", "minimum": 1},
                "source_stat_timeout": {"type": ["number", "integer"], "exclusiveMinimum": 0},
                "log_level": {
                    "type": "string",
                    "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "debug", "info", "warning", "error"],
                },
                "log_file": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": True,
}


# Fix Suggestion System
FixSuggestionGenerator = Callable[[str, str, str], Optional[str]]


def _suggest_schema_fix(path: str, message: str, code: str) -> Optional[str]:
    """Generate fix suggestion for schema validation errors."""
    if "Additional properties are not allowed" in message:
        return "Remove the unknown key or check it for typos"
    if "is not of type" in message:
        expected_type = None
        if "'string'" in message:
            expected_type = "string"
        elif "'object'" in message:
            expected_type = "object/mapping"
        elif "'array'" in message:
            expected_type = "array/list"
        elif "'boolean'" in message:
            expected_type = "boolean"
        elif "'integer'" in message or "'number'" in message:
            expected_type = "number"
        if expected_type:
            return f"Change this field to a {expected_type} value"
    if "does not match" in message:
        if path.endswith("report_extensions") or "report_extensions[" in path:
            return "Use a file extension such as '.md'"
        return "Use a single directory or file name without slashes"
    if "is not one of" in message or "is not valid under any of the given schemas" in message:
        return "Check the allowed values/formats for this field in the documentation"
    if "less than the minimum" in message or "less than or equal to the minimum" in message:
        return "Use a value greater than zero"
    return "Review the configuration schema requirements for this field"


def _suggest_data_root_fix(path: str, message: str, code: str) -> Optional[str]:
    return "Create the directory or point 'settings.data_root' (or MAILROOM_DATA_ROOT) at an existing data root"


def _suggest_extension_fix(path: str, message: str, code: str) -> Optional[str]:
    return "Prefix report extensions with a dot (e.g. '.md')"


def _suggest_load_config_fix(path: str, message: str, code: str) -> Optional[str]:
    """Generate fix suggestion for configuration file loading errors."""
    if "No such file" in message or "not found" in message.lower():
        return "Ensure the configuration file path is correct and the file exists"
    if "Permission denied" in message:
        return "Check file permissions and ensure the application has read access to the configuration file"
    if "YAML" in message or "parse" in message.lower():
        return "Fix YAML syntax errors. Common issues: incorrect indentation, missing colons, unquoted special characters"
    return "Check the configuration file for syntax errors or file access issues"


FIX_SUGGESTION_REGISTRY: Dict[str, FixSuggestionGenerator] = {
    "schema": _suggest_schema_fix,
    "data-root": _suggest_data_root_fix,
    "extension": _suggest_extension_fix,
    "load-config": _suggest_load_config_fix,
}


def get_fix_suggestion(issue: ValidationIssue) -> Optional[str]:
    generator = FIX_SUGGESTION_REGISTRY.get(issue.code)
    if generator:
        return generator(issue.path, issue.message, issue.code)
    return None


def _make_issue(
    severity: str,
    path: str,
    message: str,
    code: str,
    line_map: Optional[Dict[str, int]] = None,
) -> ValidationIssue:
    issue = ValidationIssue(
        severity=severity,
        path=path,
        message=message,
        code=code,
        line_number=line_map.get(path) if line_map else None,
    )
    issue.fix_suggestion = get_fix_suggestion(issue)
    return issue


def extract_yaml_line_numbers(yaml_content: str) -> Dict[str, int]:
    """Map dotted key paths (``settings.max_workers``) to 1-based line numbers.

    Only mapping keys are tracked, assuming two-space indentation.
    """
    line_map: Dict[str, int] = {}
    current_path: List[str] = []
    for line_num, line in enumerate(yaml_content.split("\n"), start=1):
        stripped = line.lstrip()
        if not stripped or stripped.startswith("#"):
            continue
        key_match = re.match(r"^([a-zA-Z_][a-zA-Z0-9_-]*)\s*:(\s|$)", stripped)
        if not key_match:
            continue
        depth = (len(line) - len(stripped)) // 2
        current_path = current_path[:depth]
        current_path.append(key_match.group(1))
        line_map[".".join(current_path)] = line_num
    return line_map


def extract_yaml_line_numbers_from_file(file_path: Path) -> Dict[str, int]:
    try:
        content = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return {}
    return extract_yaml_line_numbers(content)


def _format_jsonschema_path(path: Sequence[Any]) -> str:
    if not path:
        return "<root>"
    tokens: List[str] = []
    for part in path:
        if isinstance(part, int):
            if tokens:
                tokens[-1] = f"{tokens[-1]}[{part}]"
            else:
                tokens.append(f"[{part}]")
        else:
            tokens.append(str(part))
    return ".".join(tokens) if tokens else "<root>"


def validate_config_data(
    data: Dict[str, Any],
    line_map: Optional[Dict[str, int]] = None,
    *,
    base_dir: Optional[Path] = None,
) -> ValidationReport:
    """Validate configuration data against schema and semantic rules.

    Args:
        data: The configuration data to validate
        line_map: Optional mapping from config paths to line numbers in the source file
        base_dir: Directory relative ``data_root`` values are resolved against

    Returns:
        ValidationReport containing any errors or warnings found
    """
    report = ValidationReport()
    validator = Draft7Validator(CONFIG_SCHEMA)

    for error in sorted(validator.iter_errors(data), key=lambda exc: list(map(str, exc.path))):
        error_path = _format_jsonschema_path(error.absolute_path)
        report.errors.append(_make_issue("error", error_path, error.message, "schema", line_map))

    _validate_semantics(data, report, line_map, base_dir=base_dir)
    return report


def _validate_semantics(
    data: Dict[str, Any],
    report: ValidationReport,
    line_map: Optional[Dict[str, int]] = None,
    *,
    base_dir: Optional[Path] = None,
) -> None:
    if not isinstance(data, dict):
        return
    settings = data.get("settings") or {}
    if not isinstance(settings, dict):
        return

    extensions = settings.get("report_extensions")
    if isinstance(extensions, str):
        extensions = [extensions]
    if isinstance(extensions, list):
        for index, extension in enumerate(extensions):
            if isinstance(extension, str) and not extension.startswith("."):
                report.warnings.append(
                    _make_issue(
                        "warning",
                        f"settings.report_extensions[{index}]",
                        f"Extension '{extension}' will be read as '.{extension}'",
                        "extension",
                        line_map,
                    )
                )

    data_root = settings.get("data_root")
    if isinstance(data_root, str) and data_root.strip():
        root = Path(data_root).expanduser()
        if not root.is_absolute() and base_dir is not None:
            root = base_dir / root
        if not root.is_dir():
            report.warnings.append(
                _make_issue(
                    "warning",
                    "settings.data_root",
                    f"Data root {root} does not exist yet",
                    "data-root",
                    line_map,
                )
            )


def group_validation_issues(
    issues: List[ValidationIssue],
) -> Dict[str, Dict[str, List[ValidationIssue]]]:
    """Group validation issues by their root section and second-level key.

    ``settings.report_extensions[0]`` lands under
    ``grouped["settings"]["report_extensions"]``; paths without a second
    level are grouped under their root section.
    """
    grouped: Dict[str, Dict[str, List[ValidationIssue]]] = {}
    for issue in issues:
        root_match = re.match(r"^([a-zA-Z_][a-zA-Z0-9_-]*)", issue.path)
        root_section = root_match.group(1) if root_match else "<root>"
        parts = issue.path.split(".")
        sub_section = re.sub(r"\[\d+\]$", "", parts[1]) if len(parts) >= 2 else root_section
        grouped.setdefault(root_section, {}).setdefault(sub_section, []).append(issue)
    return grouped


__all__ = [
    "CONFIG_SCHEMA",
    "FIX_SUGGESTION_REGISTRY",
    "ValidationIssue",
    "ValidationReport",
    "extract_yaml_line_numbers",
    "extract_yaml_line_numbers_from_file",
    "get_fix_suggestion",
    "group_validation_issues",
    "validate_config_data",
]
