"""Group resolution and recipient set algebra.

Groups are not stored anywhere on their own: each peer lists the groups it
belongs to and the group table is the inversion of those lists. The reserved
``all`` group is rebuilt from the peer list on every call, so it can never
go stale and always wins over a user group with the same name.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .errors import InvalidGroupError
from .models import Peer

ALL_GROUP = "all"
GROUP_PREFIX = "group:"

GroupTable = dict[str, set[str]]


def resolve_groups(peers: Iterable[Peer]) -> GroupTable:
    """Build the ``group -> aliases`` table for the given peers."""
    groups: GroupTable = {}
    aliases: set[str] = set()
    for peer in peers:
        aliases.add(peer.alias)
        for group in peer.groups or []:
            groups.setdefault(group, set()).add(peer.alias)
    groups[ALL_GROUP] = aliases
    return groups


def peer_groups(peer: Peer) -> list[str]:
    """Return the groups of ``peer`` with ``all`` always first."""
    explicit = [group for group in peer.groups or [] if group != ALL_GROUP]
    return [ALL_GROUP, *dict.fromkeys(explicit)]


def group_token_name(token: str) -> str | None:
    if token.startswith(GROUP_PREFIX):
        return token[len(GROUP_PREFIX):]
    return None


class RecipientResolver:
    """Expand recipient tokens against a fixed group table."""

    def __init__(self, groups: Mapping[str, Iterable[str]]) -> None:
        self._groups = {name: frozenset(members) for name, members in groups.items()}

    @classmethod
    def for_peers(cls, peers: Iterable[Peer]) -> RecipientResolver:
        return cls(resolve_groups(peers))

    @property
    def group_names(self) -> list[str]:
        return sorted(self._groups)

    def expand(self, tokens: Sequence[str]) -> set[str]:
        """Expand literal aliases and ``group:<name>`` tokens into a set of aliases.

        Literal aliases are not checked for existence; unknown groups raise
        ``InvalidGroupError``.
        """
        expanded: set[str] = set()
        for token in tokens:
            group_name = group_token_name(token)
            if group_name is None:
                expanded.add(token)
                continue
            members = self._groups.get(group_name)
            if members is None:
                raise InvalidGroupError(group_name)
            expanded.update(members)
        return expanded

    def final_recipients(self, to: Sequence[str], except_: Sequence[str]) -> set[str]:
        return self.expand(to) - self.expand(except_)


def expand_recipients(tokens: Sequence[str], groups: Mapping[str, Iterable[str]]) -> set[str]:
    return RecipientResolver(groups).expand(tokens)


def calculate_final_recipients(
    to: Sequence[str],
    except_: Sequence[str],
    groups: Mapping[str, Iterable[str]],
) -> set[str]:
    return RecipientResolver(groups).final_recipients(to, except_)


__all__ = [
    "ALL_GROUP",
    "GROUP_PREFIX",
    "RecipientResolver",
    "calculate_final_recipients",
    "expand_recipients",
    "peer_groups",
    "resolve_groups",
]
