"""
Detection of quasi-rigid blocks between two conformations

Two aligned residues agree when their interresidue distance differs by at most
delta between the conformations. Blocks are grown greedily as the longest
chain of mutually agreeing residues, refined, merged across short gaps,
trimmed to a spatially compact core and numbered by decreasing size.
"""

import logging
import time
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from belka.core.model import Chain
from belka.core.pairs import NO_NODE, PairList, ResiduePair

logger = logging.getLogger(__name__)

N_TRACE = 50
DEFAULT_MAX_DELTA = 2.5
MIN_BLOCK_SIZE = 4
COMPACT_CUTOFF = 10.0
MAX_CLUSTER_GAP = 3


def _distance_matrix(points: np.ndarray) -> np.ndarray:
    diff = points[:, None, :] - points[None, :, :]
    return np.sqrt(np.sum(diff * diff, axis=-1))


class RigidBlockFinder:
    """
    Partition aligned residue pairs into rigid blocks.

    The group id of every pair (and of both its residues) is set to the
    block it belongs to, 0 meaning flexible or unassigned.

    Example:
        >>> finder = RigidBlockFinder.from_chains([chain1], [chain2])
        >>> n_blocks = finder.find_rigid_blocks(max_delta=2.5)
        >>> print(finder.format_report())
    """

    def __init__(self, pair_list: PairList, n_trace: int = N_TRACE) -> None:
        self.pair_list = pair_list
        self.n_trace = n_trace
        self.n_blocks = 0
        self.elapsed = 0.0
        self.max_delta = DEFAULT_MAX_DELTA
        self.refine = True
        self.cluster = True

        self._pairs: list[ResiduePair] = []
        for pair in pair_list.pairs():
            if pair.is_of_interest:
                pair.index = len(self._pairs)
                self._pairs.append(pair)

        coords1 = np.full((len(self._pairs), 3), np.nan)
        coords2 = np.full((len(self._pairs), 3), np.nan)
        for pair in self._pairs:
            if pair.residue1.has_coords:
                coords1[pair.index] = pair.residue1.coords
            if pair.residue2.has_coords:
                coords2[pair.index] = pair.residue2.coords
        n_missing = int(np.isnan(coords1[:, 0]).sum() + np.isnan(coords2[:, 0]).sum())
        if n_missing:
            logger.warning("%d aligned residues lack a representative atom", n_missing)

        distances1 = np.nan_to_num(_distance_matrix(coords1), nan=0.0)
        distances2 = np.nan_to_num(_distance_matrix(coords2), nan=0.0)
        self._delta = np.abs(distances2 - distances1)
        self._average = 0.5 * (distances1 + distances2)
        self._bad: list[list[bool]] = []

    @classmethod
    def from_chains(
        cls,
        chains1: Sequence[Chain],
        chains2: Sequence[Chain],
        n_trace: int = N_TRACE,
    ) -> "RigidBlockFinder":
        """Build the finder over co-indexed (gap-spliced) chains."""
        return cls(PairList.from_chains(chains1, chains2), n_trace=n_trace)

    @property
    def n_pairs(self) -> int:
        return len(self._pairs)

    def find_rigid_blocks(
        self,
        max_delta: float = DEFAULT_MAX_DELTA,
        refine: bool = True,
        cluster: bool = True,
    ) -> int:
        """
        Assign block ids to all pairs.

        Args:
            max_delta: Largest tolerated change of an interresidue distance (Å)
            refine: Re-run the search seeded by each newly found block
            cluster: Absorb short gaps and fragments into neighbouring blocks

        Returns:
            Number of blocks found, -1 on invalid input
        """
        if not self._pairs:
            logger.warning("No aligned residue pairs to search for rigid blocks")
            return -1
        if max_delta < 0:
            logger.warning("Distance deviation must not be negative, got %s", max_delta)
            return -1

        start = time.perf_counter()
        self.max_delta = max_delta
        self.refine = refine
        self.cluster = cluster
        self._bad = (self._delta > max_delta).tolist()

        for pair in self.pair_list.pairs():
            pair.group_id = 0

        gid = 0
        while True:
            gid += 1
            self._pairs.sort(key=lambda p: p.index)

            n_found = self._find_largest(gid)
            logger.debug("Block %d: seed search found %d residues", gid, n_found)
            if n_found < MIN_BLOCK_SIZE:
                break

            if refine:
                self._clear_short_fragments(gid)
                n_found = self._refine(gid)

            if cluster:
                n_found = self._cluster(gid)
            if n_found < MIN_BLOCK_SIZE:
                break

            # Clustering first removes stray pairs far from the main mass
            n_found = self._find_compact(gid)
            if n_found < MIN_BLOCK_SIZE:
                break

            if cluster:
                n_found = self._cluster(gid)
                if n_found < MIN_BLOCK_SIZE:
                    break

        self.n_blocks = gid - 1
        for pair in self.pair_list.pairs():
            if pair.group_id > self.n_blocks:
                pair.group_id = 0
        self._order_by_size()

        for pair in self.pair_list.pairs():
            for residue in (pair.residue1, pair.residue2):
                if residue is not None:
                    residue.group_id = pair.group_id

        self._pairs.sort(key=lambda p: p.index)
        self.elapsed = time.perf_counter() - start
        logger.info(
            "Found %d rigid blocks in %.3f s (delta %.2f)", self.n_blocks, self.elapsed, max_delta
        )
        return self.n_blocks

    def _find_largest(self, gid: int) -> int:
        """
        Longest chain of mutually agreeing residues, labelled gid.

        Residues already owned by an earlier block are skipped. Every residue
        keeps up to n_trace candidate chains ending at it, stored as length
        plus a backpointer (residue position, candidate slot).
        """
        pairs = self._pairs
        n = len(pairs)
        n_trace = self.n_trace
        bad = self._bad
        index = [p.index for p in pairs]
        skip = [0 < p.group_id < gid for p in pairs]

        lengths = [[0] * n_trace for _ in range(n)]
        trace_r = [[-1] * n_trace for _ in range(n)]
        trace_s = [[-1] * n_trace for _ in range(n)]

        for r1 in range(n):
            if skip[r1]:
                continue
            ne1, tr1, ts1 = lengths[r1], trace_r[r1], trace_s[r1]
            bad1 = bad[index[r1]]
            ne1[0] = 1
            n_traced = 1
            min_slot = -1

            for r2 in range(r1 - 1, -1, -1):
                if skip[r2]:
                    continue
                ne2 = lengths[r2]
                for s in range(n_trace):
                    if ne2[s] <= 0:
                        break
                    if n_traced == n_trace and ne2[s] < ne1[min_slot]:
                        continue

                    # r1 has to agree with every residue of the chain ending at (r2, s)
                    r_tr, s_tr = r2, s
                    agrees = True
                    while r_tr >= 0 and s_tr >= 0:
                        if bad1[index[r_tr]]:
                            agrees = False
                            break
                        r_tr, s_tr = trace_r[r_tr][s_tr], trace_s[r_tr][s_tr]
                    if not agrees:
                        continue

                    length = ne2[s] + 1
                    if n_traced < n_trace:
                        slot = n_traced
                        n_traced += 1
                    elif length > ne1[min_slot]:
                        slot = min_slot
                    else:
                        continue
                    ne1[slot] = length
                    tr1[slot] = r2
                    ts1[slot] = s

                    min_slot = 1
                    for i in range(2, n_traced):
                        if ne1[i] < ne1[min_slot]:
                            min_slot = i

        best_length, best_r, best_s = 0, -1, -1
        for r in range(n):
            if skip[r]:
                continue
            for s in range(n_trace):
                if lengths[r][s] > best_length:
                    best_length, best_r, best_s = lengths[r][s], r, s

        r_tr, s_tr = best_r, best_s
        while r_tr >= 0 and s_tr >= 0:
            pairs[r_tr].group_id = gid
            r_tr, s_tr = trace_r[r_tr][s_tr], trace_s[r_tr][s_tr]
        return best_length

    def _refine(self, gid: int) -> int:
        """Search again with residues ordered by their fit to the current block."""
        self._sort_for_block(gid)
        for pair in self._pairs:
            if pair.group_id == gid:
                pair.group_id = 0
        return self._find_largest(gid)

    def _sort_for_block(self, gid: int) -> None:
        """
        Order pairs by their relation to block gid.

        Members come first, ordered by the sum of average distances to the
        other members; the rest follow by the smallest average distance to
        any member.
        """
        members = np.array([p.index for p in self._pairs if p.group_id == gid], dtype=int)
        for pair in self._pairs:
            if pair.group_id == gid:
                pair.sort_key = 0.0
                pair.score = float(self._average[pair.index, members].sum())
            else:
                pair.sort_key = (
                    float(self._average[pair.index, members].min()) if members.size else 1e100
                )
                pair.score = 0.0
        self._pairs.sort(key=lambda p: (p.sort_key, p.score))

    def _find_compact(self, gid: int) -> int:
        """
        Keep the members of block gid that are single-linkage connected to
        its most central residue within COMPACT_CUTOFF.
        """
        self._sort_for_block(gid)
        pairs = self._pairs
        if pairs[0].group_id != gid:
            return 0

        seed = pairs[0].index
        for pair in pairs:
            pair.sort_key = float(self._average[seed, pair.index])
            pair.score = 0.0
        pairs[0].sort_key = 0.0
        pairs.sort(key=lambda p: (p.sort_key, p.score))

        n_kept = 1
        for i1 in range(1, len(pairs)):
            pair1 = pairs[i1]
            if pair1.group_id != gid:
                continue
            pair1.group_id = 0
            for i2 in range(i1):
                pair2 = pairs[i2]
                if pair2.group_id == gid and self._average[pair1.index, pair2.index] < COMPACT_CUTOFF:
                    pair1.group_id = gid
                    n_kept += 1
                    break
        return n_kept

    def _cluster(self, gid: int) -> int:
        """Merge block gid across short gaps, then drop its short fragments."""
        for gap_size in range(1, MAX_CLUSTER_GAP + 1):
            self._cluster_fragments(gap_size, gid)
            self._cluster_fragments(gap_size, 0)
        self._clear_short_fragments(gid)
        return self._count(gid)

    def _count(self, gid: int) -> int:
        return sum(1 for pair in self.pair_list.pairs() if pair.group_id == gid)

    def _fragment_end(self, node: int, gid: int) -> tuple[int, int, int]:
        """
        Walk a bonded run of gid pairs starting at node.

        Returns:
            (last node of the run, node after the run, run length)
        """
        pl = self.pair_list
        end = node
        length = 1
        node = pl.next(node)
        while node != NO_NODE and pl[node].group_id == gid and pl.is_connected(node, end):
            end = node
            node = pl.next(node)
            length += 1
        return end, node, length

    def _cluster_fragments(self, gap_size: int, gid: int) -> None:
        """Grow every fragment of gid of minimal size across short gaps on both sides."""
        pl = self.pair_list
        node = pl.head
        while node != NO_NODE:
            if pl[node].group_id != gid:
                node = pl.next(node)
                continue
            start = node
            end, node, length = self._fragment_end(node, gid)
            if length >= MIN_BLOCK_SIZE:
                self._cluster_on_side(gap_size, gid, start, after=False)
                self._cluster_on_side(gap_size, gid, end, after=True)
                while node != NO_NODE and pl[node].group_id == gid:
                    node = pl.next(node)

    def _cluster_on_side(self, gap_size: int, gid: int, start: int, after: bool) -> None:
        """
        Absorb runs of at most gap_size foreign pairs of interest that lie
        between start and the next pair of gid in one direction. A run
        reaching the end of the list must be shorter than gap_size.
        """
        pl = self.pair_list
        step = pl.next if after else pl.prev
        while True:
            node = step(start)
            n_between = 0
            while node != NO_NODE and pl[node].group_id != gid:
                if pl[node].is_of_interest:
                    n_between += 1
                node = step(node)

            limit = gap_size - 1 if node == NO_NODE else gap_size
            if n_between > limit:
                return

            while start != node:
                if pl[start].is_of_interest:
                    pl[start].group_id = gid
                start = step(start)

            while node != NO_NODE and pl[node].group_id == gid:
                start = node
                node = step(node)
            if node == NO_NODE:
                return

    def _clear_short_fragments(self, gid: int) -> None:
        """Unassign bonded runs of gid shorter than MIN_BLOCK_SIZE."""
        pl = self.pair_list
        node = pl.head
        while node != NO_NODE:
            if pl[node].group_id != gid:
                node = pl.next(node)
                continue
            start = node
            _, node, length = self._fragment_end(node, gid)
            if length < MIN_BLOCK_SIZE:
                while start != node:
                    pl[start].group_id = 0
                    start = pl.next(start)

    def block_sizes(self) -> list[int]:
        """Residue count of blocks 1..n_blocks."""
        sizes = [0] * self.n_blocks
        for pair in self.pair_list.pairs():
            if pair.group_id > 0:
                sizes[pair.group_id - 1] += 1
        return sizes

    def _order_by_size(self) -> None:
        """Renumber blocks so that block 1 is the largest."""
        sizes = self.block_sizes()
        for i in range(self.n_blocks):
            largest = max(range(i, self.n_blocks), key=lambda k: (sizes[k], -k))
            if largest == i:
                continue
            id1, id2 = i + 1, largest + 1
            for pair in self.pair_list.pairs():
                if pair.group_id == id1:
                    pair.group_id = id2
                elif pair.group_id == id2:
                    pair.group_id = id1
            sizes[i], sizes[largest] = sizes[largest], sizes[i]

    def format_report(self) -> str:
        """
        One line per block: residue count followed by contiguous runs
        ``(<chain1><chain2>,<start1>,<start2>,<length>)``.
        """
        lines = []
        for gid in range(1, self.n_blocks + 1):
            runs = []
            n_residues = 0
            run: list | None = None
            for pair in self.pair_list.pairs():
                if not pair.is_of_interest or pair.group_id != gid:
                    run = None
                    continue
                n_residues += 1
                residue1, residue2 = pair.residue1, pair.residue2
                if (
                    run is not None
                    and run[0] == residue1.chain_id
                    and run[1] == residue2.chain_id
                    and residue1.serial == run[2] + run[4]
                    and residue2.serial == run[3] + run[4]
                ):
                    run[4] += 1
                else:
                    run = [residue1.chain_id, residue2.chain_id, residue1.serial, residue2.serial, 1]
                    runs.append(run)
            descriptors = "".join(f" ({c1}{c2},{s1},{s2},{length})" for c1, c2, s1, s2, length in runs)
            lines.append(f"{n_residues} {descriptors}")
        return "\n".join(lines)

    def save_report(self, output_path: Path, name1: str = "", name2: str = "") -> None:
        """
        Write the block report preceded by a header describing the search.

        Raises:
            OSError: If the file cannot be written
        """
        header = (
            f"{name1} {name2} {self.max_delta} "
            f"{'refine' if self.refine else 'norefine'} "
            f"{'cluster' if self.cluster else 'nocluster'}"
        )
        report = self.format_report()
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(f"{header}\n{report}\n" if report else f"{header}\n")
        except OSError as e:
            raise OSError(f"Failed to save block report to {output_path}: {e}") from e
