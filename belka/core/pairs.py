"""
Ordered list of residue correspondence pairs.

Pairs live in an arena: nodes are addressed by integer handles and linked
through next/prev index arrays, -1 meaning no neighbour. A node becomes part
of the sequence only through append/insert_after/insert_before, so an
unlinked node can never introduce a cycle.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from belka.core.model import Chain, Residue

logger = logging.getLogger(__name__)

NO_NODE = -1


@dataclass(eq=False)
class ResiduePair:
    """
    One alignment column.

    Attributes:
        residue1: Residue of conformation 1 (None or gap placeholder if absent)
        residue2: Residue of conformation 2 (None or gap placeholder if absent)
        is_of_interest: False for gap columns
        group_id: Rigid block id
        index: Position among the pairs of interest
        score: Auxiliary score used while sorting
        sort_key: Primary sort key
    """

    residue1: Residue | None
    residue2: Residue | None
    is_of_interest: bool = True
    group_id: int = 0
    index: int = 0
    score: float = 0.0
    sort_key: float = 0.0

    @classmethod
    def from_residues(cls, residue1: Residue | None, residue2: Residue | None) -> "ResiduePair":
        present1 = residue1 is not None and not residue1.is_gap
        present2 = residue2 is not None and not residue2.is_gap
        return cls(residue1, residue2, is_of_interest=present1 and present2)


class PairList:
    """Arena-backed doubly linked list of ResiduePair nodes."""

    def __init__(self) -> None:
        self._pairs: list[ResiduePair] = []
        self._next: list[int] = []
        self._prev: list[int] = []
        self._linked: list[bool] = []
        self._connections: list[set[int]] = []
        self.head = NO_NODE
        self.tail = NO_NODE

    def __getitem__(self, node: int) -> ResiduePair:
        return self._pairs[node]

    def __len__(self) -> int:
        """Number of linked nodes."""
        return sum(self._linked)

    def __iter__(self) -> Iterator[int]:
        """Iterate over linked node handles from head to tail."""
        node = self.head
        while node != NO_NODE:
            yield node
            node = self._next[node]

    def pairs(self) -> Iterator[ResiduePair]:
        for node in self:
            yield self._pairs[node]

    def next(self, node: int) -> int:
        return self._next[node]

    def prev(self, node: int) -> int:
        return self._prev[node]

    def is_linked(self, node: int) -> bool:
        return self._linked[node]

    def add(self, pair: ResiduePair) -> int:
        """Store a pair in the arena without linking it; returns its handle."""
        self._pairs.append(pair)
        self._next.append(NO_NODE)
        self._prev.append(NO_NODE)
        self._linked.append(False)
        self._connections.append(set())
        return len(self._pairs) - 1

    def append(self, pair: ResiduePair) -> int:
        """Store a pair and link it after the current tail."""
        node = self.add(pair)
        if self.tail == NO_NODE:
            self.head = self.tail = node
            self._linked[node] = True
        else:
            self.insert_after(self.tail, node)
        return node

    def _can_link(self, anchor: int, node: int) -> bool:
        if node == anchor:
            logger.warning("Cannot link pair %d to itself", node)
            return False
        if not self._linked[anchor]:
            logger.warning("Anchor pair %d is not part of the list", anchor)
            return False
        if self._linked[node]:
            logger.warning("Pair %d is already linked", node)
            return False
        return True

    def insert_after(self, anchor: int, node: int) -> bool:
        """Link an unlinked node right after anchor."""
        if not self._can_link(anchor, node):
            return False
        following = self._next[anchor]
        self._prev[node] = anchor
        self._next[node] = following
        self._next[anchor] = node
        if following == NO_NODE:
            self.tail = node
        else:
            self._prev[following] = node
        self._linked[node] = True
        return True

    def insert_before(self, anchor: int, node: int) -> bool:
        """Link an unlinked node right before anchor."""
        if not self._can_link(anchor, node):
            return False
        preceding = self._prev[anchor]
        self._next[node] = anchor
        self._prev[node] = preceding
        self._prev[anchor] = node
        if preceding == NO_NODE:
            self.head = node
        else:
            self._next[preceding] = node
        self._linked[node] = True
        return True

    def _unlink(self, node: int) -> None:
        preceding, following = self._prev[node], self._next[node]
        if preceding == NO_NODE:
            self.head = following
        else:
            self._next[preceding] = following
        if following == NO_NODE:
            self.tail = preceding
        else:
            self._prev[following] = preceding
        self._next[node] = self._prev[node] = NO_NODE
        self._linked[node] = False

    def extract_after(self, anchor: int) -> int:
        """Detach and return the node following anchor, or -1 if none."""
        node = self._next[anchor]
        if node != NO_NODE:
            self._unlink(node)
        return node

    def extract_before(self, anchor: int) -> int:
        """Detach and return the node preceding anchor, or -1 if none."""
        node = self._prev[anchor]
        if node != NO_NODE:
            self._unlink(node)
        return node

    def add_connection(self, node1: int, node2: int) -> bool:
        """Mark two nodes as chemically consecutive."""
        if node1 == node2:
            return False
        self._connections[node1].add(node2)
        self._connections[node2].add(node1)
        return True

    def is_connected(self, node1: int, node2: int) -> bool:
        return node2 in self._connections[node1]

    def extend(self, columns: Iterable[tuple[Residue | None, Residue | None]]) -> None:
        """
        Append one pair per alignment column of a single chain pair.

        Consecutive pairs are connected when both underlying residue pairs
        are bonded. Pairs of interest continue the running index.
        """
        n_interest = sum(pair.is_of_interest for pair in self._pairs)
        previous = NO_NODE
        for residue1, residue2 in columns:
            pair = ResiduePair.from_residues(residue1, residue2)
            node = self.append(pair)
            if pair.is_of_interest:
                pair.index = n_interest
                n_interest += 1
            if previous != NO_NODE:
                before = self[previous]
                if (
                    before.residue1 is not None
                    and before.residue2 is not None
                    and before.residue1.is_connected_to(residue1)
                    and before.residue2.is_connected_to(residue2)
                ):
                    self.add_connection(previous, node)
            previous = node

    @classmethod
    def from_chains(cls, chains1: Sequence[Chain], chains2: Sequence[Chain]) -> "PairList":
        """
        Pair co-indexed residues of already aligned chains.

        Consecutive pairs are connected when both underlying residue pairs
        are bonded. Pairs of interest get consecutive indices.

        Args:
            chains1: Chains of conformation 1
            chains2: Chains of conformation 2, co-indexed with chains1

        Returns:
            PairList with one node per alignment column
        """
        if len(chains1) != len(chains2):
            raise ValueError(
                f"Chain lists differ in length: {len(chains1)} vs {len(chains2)}"
            )

        pair_list = cls()
        for chain1, chain2 in zip(chains1, chains2):
            if len(chain1) != len(chain2):
                logger.warning(
                    "Chains %s and %s differ in length (%d vs %d), extra residues ignored",
                    chain1.chain_id,
                    chain2.chain_id,
                    len(chain1),
                    len(chain2),
                )
            pair_list.extend(zip(chain1, chain2))
        return pair_list
