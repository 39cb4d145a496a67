"""Error taxonomy for a sync run.

Isolated faults (an unknown group, a missing attachment, a failed write) are
raised close to where they happen and converted into strings on the
``SyncResult`` by the dispatcher. Only ``CatastrophicFailure`` ends a run.
"""

from __future__ import annotations


class MailroomError(Exception):
    """Base class for every error raised by the dissemination engine."""


class InvalidGroupError(MailroomError):
    def __init__(self, group_name: str) -> None:
        self.group_name = group_name
        super().__init__(f"Invalid group name '{group_name}' found in recipients.")


class UnsafePathError(MailroomError, ValueError):
    """A relative path would escape the root it is joined onto."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path!r}: {reason}")


class SourceFileUnavailable(MailroomError):
    def __init__(self, path: object, reason: object) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Source file {path} is unavailable: {reason}")


class FilesystemFault(MailroomError):
    """A delete, write or stat failed while reconciling a mailbox."""

    def __init__(self, action: str, path: object, reason: object) -> None:
        self.action = action
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to {action} {path}: {reason}")


class CatastrophicFailure(MailroomError):
    """Peers or entries could not be enumerated at all."""


__all__ = [
    "CatastrophicFailure",
    "FilesystemFault",
    "InvalidGroupError",
    "MailroomError",
    "SourceFileUnavailable",
    "UnsafePathError",
]
