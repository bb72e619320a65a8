"""
In-memory Presence Directory.

Counts, for a subject, how many of its peers (friends) are currently
present in the same session.
"""

from collections import defaultdict
from typing import Hashable


class InMemoryPresenceDirectory:
    """
    Tracks which subjects are present and who is peered with whom.

    Peer relations are symmetric and survive leaving; only present
    peers are counted.
    """

    def __init__(self):
        self._present: set[Hashable] = set()
        self._peers: dict[Hashable, set[Hashable]] = defaultdict(set)

    def join(self, subject_id: Hashable) -> None:
        self._present.add(subject_id)

    def leave(self, subject_id: Hashable) -> None:
        self._present.discard(subject_id)

    def is_present(self, subject_id: Hashable) -> bool:
        return subject_id in self._present

    def add_peer(self, a: Hashable, b: Hashable) -> None:
        """Record that a and b are peers of each other."""
        if a == b:
            raise ValueError("A subject cannot be its own peer")
        self._peers[a].add(b)
        self._peers[b].add(a)

    def remove_peer(self, a: Hashable, b: Hashable) -> None:
        self._peers.get(a, set()).discard(b)
        self._peers.get(b, set()).discard(a)

    def peers_present(self, subject_id: Hashable) -> list[Hashable]:
        return [p for p in self._peers.get(subject_id, ()) if p in self._present]

    def peer_count(self, subject_id: Hashable) -> int:
        """Number of the subject's peers currently present."""
        return len(self.peers_present(subject_id))
