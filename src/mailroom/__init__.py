"""Mailroom dissemination engine.

Entries written once under the data root are copied into per-peer mailbox
directories according to the routing header at the top of each entry:

- **metadata_parser**: reads and writes the routing header (``to``, ``except``, ``sourceFiles``, ``destinationPath``)
- **groups**: group table derived from peer configs, and recipient set algebra
- **planner**: desired mailbox contents per peer, including package folders with attachments
- **reconciler**: delete, write and prune so a mailbox matches its desired contents
- **dispatcher**: one full sync pass over every entry and peer
- **store**: file-backed peers, groups and entries under the data root

The main entry point is ``Dispatcher(settings).run_sync()``.
"""

from .dispatcher import Dispatcher
from .metadata_parser import generate_header, parse_metadata
from .version import __version__

__all__ = [
    "__version__",
    "Dispatcher",
    "generate_header",
    "parse_metadata",
]
