"""
Global sequence alignment of residue chains

Needleman-Wunsch with affine gap penalties and free end gaps: gaps before the
first or after the last aligned residue of either sequence cost nothing, only
gaps strictly between aligned residues are penalised.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from Bio.Align import substitution_matrices

from belka.core.model import GAP_CHAR, Chain, Residue
from belka.core.pairs import PairList

logger = logging.getLogger(__name__)

AVAILABLE_MATRICES = ("BLOSUM45", "BLOSUM62", "BLOSUM80", "PAM30", "PAM70")
DEFAULT_MATRIX = "BLOSUM62"
DEFAULT_GAP_OPEN = -10
DEFAULT_GAP_EXTEND = -1


@dataclass
class AlignmentResult:
    """Outcome of one pairwise alignment."""

    aligned1: str = ""
    aligned2: str = ""
    length: int = 0
    identities: int = 0
    positives: int = 0
    gaps: int = 0
    score: int = -1
    trace: list[tuple[int, int]] = field(default_factory=list)
    pairs: PairList | None = None

    @property
    def is_valid(self) -> bool:
        return self.score >= 0

    def summary(self) -> str:
        return (
            f"len = {self.length}, #ident = {self.identities}, "
            f"#pos = {self.positives}, #gaps = {self.gaps}"
        )


class SequenceAligner:
    """
    Needleman-Wunsch aligner with selectable substitution matrix.

    Example:
        >>> aligner = SequenceAligner()
        >>> result = aligner.align_chains(chain1, chain2)
        >>> aligner.apply_to_chains(result, chain1, chain2)
    """

    def __init__(
        self,
        matrix: str = DEFAULT_MATRIX,
        gap_open: int = DEFAULT_GAP_OPEN,
        gap_extend: int = DEFAULT_GAP_EXTEND,
    ) -> None:
        self.gap_open = DEFAULT_GAP_OPEN
        self.gap_extend = DEFAULT_GAP_EXTEND
        self._load_matrix(DEFAULT_MATRIX)
        if matrix != DEFAULT_MATRIX:
            self.set_matrix(matrix)
        self.set_gap_open(gap_open)
        self.set_gap_extend(gap_extend)

    def _load_matrix(self, name: str) -> None:
        matrix = substitution_matrices.load(name)
        self.matrix_name = name
        self._alphabet = {letter: i for i, letter in enumerate(matrix.alphabet)}
        self._scores = np.array(matrix, dtype=float).astype(int)

    def set_matrix(self, name: str) -> bool:
        """Select a substitution matrix by name."""
        name = name.upper()
        if name not in AVAILABLE_MATRICES:
            logger.warning(
                "Unknown substitution matrix %s, available: %s",
                name,
                ", ".join(AVAILABLE_MATRICES),
            )
            return False
        self._load_matrix(name)
        return True

    def set_gap_open(self, penalty: int) -> bool:
        if penalty > 0:
            logger.warning("Gap open penalty must not be positive, got %s", penalty)
            return False
        self.gap_open = penalty
        return True

    def set_gap_extend(self, penalty: int) -> bool:
        if penalty > 0:
            logger.warning("Gap extension penalty must not be positive, got %s", penalty)
            return False
        self.gap_extend = penalty
        return True

    def _encode(self, sequence: str) -> list[int]:
        unknown = self._alphabet["*"]
        return [self._alphabet.get(letter.upper(), unknown) for letter in sequence]

    def substitution_score(self, letter1: str, letter2: str) -> int:
        code1, code2 = self._encode(letter1 + letter2)
        return int(self._scores[code1, code2])

    def align_sequences(self, sequence1: str, sequence2: str) -> AlignmentResult:
        """
        Align two one-letter sequences.

        Args:
            sequence1: First sequence (gap characters are ignored)
            sequence2: Second sequence (gap characters are ignored)

        Returns:
            AlignmentResult with score -1 if either sequence is empty
        """
        seq1 = sequence1.replace(GAP_CHAR, "")
        seq2 = sequence2.replace(GAP_CHAR, "")
        if not seq1 or not seq2:
            logger.warning("Cannot align empty sequence")
            return AlignmentResult()

        codes1 = self._encode(seq1)
        codes2 = self._encode(seq2)
        scores = self._scores.tolist()
        len1, len2 = len(seq1), len(seq2)

        score = [[0] * (len2 + 1) for _ in range(len1 + 1)]
        # Signed traceback pointers, a negative value marks a gap step
        trace_x = [[0] * (len2 + 1) for _ in range(len1 + 1)]
        trace_y = [[0] * (len2 + 1) for _ in range(len1 + 1)]
        for i1 in range(1, len1 + 1):
            trace_x[i1][0] = -(i1 - 1)
        for i2 in range(1, len2 + 1):
            trace_y[0][i2] = -(i2 - 1)

        gap_open, gap_extend = self.gap_open, self.gap_extend
        for i1 in range(1, len1 + 1):
            row = scores[codes1[i1 - 1]]
            above, current = score[i1 - 1], score[i1]
            tx_above, tx, ty = trace_x[i1 - 1], trace_x[i1], trace_y[i1]
            for i2 in range(1, len2 + 1):
                diag = above[i2 - 1] + row[codes2[i2 - 1]]

                # Gaps after the last residue of the other sequence are free
                left = above[i2]
                if i2 != len2:
                    left += gap_extend if tx_above[i2] < 0 else gap_open

                up = current[i2 - 1]
                if i1 != len1:
                    up += gap_extend if ty[i2 - 1] < 0 else gap_open

                if diag >= left and diag >= up:
                    current[i2] = diag
                    tx[i2] = i1 - 1
                    ty[i2] = i2 - 1
                elif left >= diag and left >= up:
                    current[i2] = left
                    tx[i2] = -(i1 - 1)
                    ty[i2] = i2
                else:
                    current[i2] = up
                    tx[i2] = i1
                    ty[i2] = -(i2 - 1)

        result = AlignmentResult(score=score[len1][len2])
        aligned1: list[str] = []
        aligned2: list[str] = []
        ind1, ind2 = len1, len2
        new1, new2 = abs(trace_x[ind1][ind2]), abs(trace_y[ind1][ind2])
        while new1 != ind1 or new2 != ind2:
            result.trace.append((ind1 - 1, ind2 - 1))
            if ind1 > 0 and ind2 > 0:
                non_gap = ind1 - 1 == new1 and ind2 - 1 == new2
                if non_gap or result.length > 0:
                    result.length += 1
                    letter1, letter2 = seq1[ind1 - 1], seq2[ind2 - 1]
                    if non_gap:
                        if letter1 == letter2:
                            result.identities += 1
                        if scores[codes1[ind1 - 1]][codes2[ind2 - 1]] > 0:
                            result.positives += 1
                    else:
                        result.gaps += 1
                        if ind1 == new1:
                            letter1 = GAP_CHAR
                        if ind2 == new2:
                            letter2 = GAP_CHAR
                    aligned1.append(letter1)
                    aligned2.append(letter2)
            ind1, ind2 = new1, new2
            new1, new2 = abs(trace_x[ind1][ind2]), abs(trace_y[ind1][ind2])

        result.trace.reverse()
        result.aligned1 = "".join(reversed(aligned1))
        result.aligned2 = "".join(reversed(aligned2))
        logger.debug("Alignment score %d, %s", result.score, result.summary())
        return result

    def align_chains(self, chain1: Chain, chain2: Chain) -> AlignmentResult:
        """
        Align the non-gap residues of two chains.

        The result carries a PairList with one node per alignment column;
        columns where one side has no residue hold None on that side.
        Columns bonded on both sides are connected, so the list can be
        handed to the rigid block search directly.
        """
        if chain1 is None or chain2 is None:
            logger.warning("Cannot align a missing chain")
            return AlignmentResult()

        residues1 = [r for r in chain1 if not r.is_gap]
        residues2 = [r for r in chain2 if not r.is_gap]
        result = self.align_sequences(
            "".join(r.letter for r in residues1),
            "".join(r.letter for r in residues2),
        )
        if not result.is_valid:
            return result

        result.pairs = PairList()
        result.pairs.extend(_trace_columns(result.trace, residues1, residues2))
        return result

    def apply_to_chains(self, result: AlignmentResult, chain1: Chain, chain2: Chain) -> bool:
        """
        Splice gap placeholders into both chains so they become co-indexed.

        Existing gaps are removed first. Afterwards every residue's aligned
        flag tells whether its counterpart in the same column is a residue.

        Returns:
            False if the alignment is invalid
        """
        if not result.is_valid:
            logger.warning("Cannot apply an invalid alignment")
            return False

        chain1.remove_gaps()
        chain2.remove_gaps()
        columns = _trace_columns(result.trace, chain1.residues, chain2.residues)
        chain1.residues = [
            r1 if r1 is not None else Residue.create_gap(chain1.chain_id) for r1, _ in columns
        ]
        chain2.residues = [
            r2 if r2 is not None else Residue.create_gap(chain2.chain_id) for _, r2 in columns
        ]

        for residue1, residue2 in zip(chain1.residues, chain2.residues):
            residue1.aligned = not residue2.is_gap
            residue2.aligned = not residue1.is_gap
        return True


def _trace_columns(
    trace: list[tuple[int, int]],
    residues1: list[Residue],
    residues2: list[Residue],
) -> list[tuple[Residue | None, Residue | None]]:
    """Turn a forward traceback into alignment columns."""
    columns = []
    last1 = last2 = -1
    for ind1, ind2 in trace:
        residue1 = residues1[ind1] if ind1 != last1 else None
        residue2 = residues2[ind2] if ind2 != last2 else None
        columns.append((residue1, residue2))
        last1, last2 = ind1, ind2
    return columns
