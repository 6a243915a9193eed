"""Tests for Needleman-Wunsch alignment and gap splicing."""

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from belka.core.model import Chain, residue_letter, residue_name
from belka.core.sequences import (
    DEFAULT_GAP_EXTEND,
    DEFAULT_GAP_OPEN,
    SequenceAligner,
)
from conftest import helix_coords

ALL_AMINO_ACIDS = "ACDEFGHIKLMNPQRSTVWY"


def chain_for(sequence, chain_id="A"):
    return Chain.from_coordinates(chain_id, sequence, helix_coords(len(sequence)))


class TestAlignerSettings:
    """Test matrix and penalty configuration."""

    def test_defaults(self):
        """Test the aligner starts with BLOSUM62 and -10/-1 penalties."""
        aligner = SequenceAligner()

        assert aligner.matrix_name == "BLOSUM62"
        assert aligner.gap_open == DEFAULT_GAP_OPEN == -10
        assert aligner.gap_extend == DEFAULT_GAP_EXTEND == -1

    @pytest.mark.parametrize("name", ["BLOSUM45", "BLOSUM80", "PAM30", "pam70"])
    def test_set_known_matrix(self, name):
        """Test every supported matrix can be selected."""
        aligner = SequenceAligner()

        assert aligner.set_matrix(name)
        assert aligner.matrix_name == name.upper()

    def test_set_unknown_matrix(self):
        """Test an unknown matrix is rejected and the old one kept."""
        aligner = SequenceAligner()

        assert not aligner.set_matrix("GONNET1992")
        assert aligner.matrix_name == "BLOSUM62"

    def test_positive_penalties_rejected(self):
        """Test gap penalties above zero are refused."""
        aligner = SequenceAligner()

        assert not aligner.set_gap_open(5)
        assert not aligner.set_gap_extend(1)
        assert aligner.gap_open == -10
        assert aligner.gap_extend == -1
        assert aligner.set_gap_open(0)
        assert aligner.gap_open == 0

    def test_substitution_scores(self):
        """Test lookups against known BLOSUM62 values."""
        aligner = SequenceAligner()

        assert aligner.substitution_score("A", "A") == 4
        assert aligner.substitution_score("W", "W") == 11
        assert aligner.substitution_score("W", "G") == -2

    def test_residue_letter(self):
        """Test three-letter names map to one-letter codes."""
        assert residue_letter("TRP") == "W"
        assert residue_letter("DG") == "G"
        assert residue_letter("HOH") == "X"

    def test_residue_name(self):
        """Test one-letter codes map back to residue names."""
        assert residue_name("W") == "TRP"
        assert residue_name("X") == "UNK"
        assert residue_name("G", atom_name="P") == "G"

    def test_chain_from_coordinates_uses_residue_names(self):
        """Test chains built from a sequence carry three-letter names."""
        chain = chain_for("MKV")

        assert [residue.name for residue in chain] == ["MET", "LYS", "VAL"]
        assert chain.sequence == "MKV"


class TestAlignSequences:
    """Test raw sequence alignment."""

    def test_single_identical_residue(self):
        """Test A vs A scores the self-substitution value."""
        result = SequenceAligner().align_sequences("A", "A")

        assert result.score == 4
        assert result.gaps == 0
        assert result.identities == 1
        assert result.length == 1

    def test_identical_sequences(self):
        """Test identical sequences score the sum of the diagonal."""
        aligner = SequenceAligner()
        result = aligner.align_sequences(ALL_AMINO_ACIDS, ALL_AMINO_ACIDS)

        expected = sum(aligner.substitution_score(a, a) for a in ALL_AMINO_ACIDS)
        assert result.score == expected
        assert result.gaps == 0
        assert result.identities == len(ALL_AMINO_ACIDS)
        assert result.positives == len(ALL_AMINO_ACIDS)
        assert result.aligned1 == result.aligned2 == ALL_AMINO_ACIDS
        assert result.trace == [(i, i) for i in range(len(ALL_AMINO_ACIDS))]

    @settings(max_examples=50, deadline=None)
    @given(st.text(alphabet=ALL_AMINO_ACIDS, min_size=1, max_size=40))
    def test_random_identical_sequences(self, sequence):
        """Property-based test for self-alignment of random sequences."""
        aligner = SequenceAligner()

        result = aligner.align_sequences(sequence, sequence)

        assert result.score == sum(aligner.substitution_score(a, a) for a in sequence)
        assert result.gaps == 0
        assert result.identities == len(sequence)

    def test_empty_sequence(self):
        """Test an empty input gives the -1 sentinel score."""
        result = SequenceAligner().align_sequences("", "ACD")

        assert result.score == -1
        assert not result.is_valid
        assert result.trace == []

    def test_internal_gap(self):
        """Test a deletion inside the sequence opens one penalised gap."""
        result = SequenceAligner().align_sequences("ACDEFGHIKL", "ACDEFHIKL")

        assert result.aligned1 == "ACDEFGHIKL"
        assert result.aligned2 == "ACDEF-HIKL"
        assert result.gaps == 1
        assert result.identities == 9
        assert result.length == 10
        # 30 for ACDEF, 21 for HIKL, -10 for opening the gap
        assert result.score == 41

    def test_trailing_gap_is_free(self):
        """Test an overhang at the end is neither penalised nor counted."""
        aligner = SequenceAligner()
        result = aligner.align_sequences("ACDEFGHIKLW", "ACDEFGHIKL")

        expected = sum(aligner.substitution_score(a, a) for a in "ACDEFGHIKL")
        assert result.score == expected
        assert result.gaps == 0
        assert result.aligned1 == "ACDEFGHIKL"
        assert result.trace[-1] == (10, 9)

    def test_leading_gap_is_free(self):
        """Test an overhang at the start is not penalised."""
        aligner = SequenceAligner()
        result = aligner.align_sequences("WWACDEFGHIKL", "ACDEFGHIKL")

        expected = sum(aligner.substitution_score(a, a) for a in "ACDEFGHIKL")
        assert result.score == expected
        assert result.gaps == 0

    def test_gap_characters_ignored(self):
        """Test gaps already present in the input are skipped."""
        aligner = SequenceAligner()

        assert aligner.align_sequences("AC-D", "ACD").score == aligner.align_sequences("ACD", "ACD").score

    def test_summary_line(self):
        """Test the alignment summary format."""
        result = SequenceAligner().align_sequences("ACDEFGHIKL", "ACDEFHIKL")

        assert result.summary() == "len = 10, #ident = 9, #pos = 9, #gaps = 1"


class TestAlignChains:
    """Test chain alignment and gap splicing."""

    def test_pairs_follow_alignment_columns(self):
        """Test the pair list holds one node per column with None for gaps."""
        chain1 = chain_for("ACDEFGHIKL")
        chain2 = chain_for("ACDEFHIKL", "B")

        result = SequenceAligner().align_chains(chain1, chain2)
        pairs = list(result.pairs.pairs())

        assert len(pairs) == 10
        assert pairs[5].residue1 is chain1[5]
        assert pairs[5].residue2 is None
        assert not pairs[5].is_of_interest
        assert pairs[6].residue2 is chain2[5]
        assert sum(p.is_of_interest for p in pairs) == 9

    def test_pairs_are_connected_along_the_chain(self):
        """Test bonded columns are connected and the gap column breaks the connection."""
        chain1 = chain_for("ACDEFGHIKL")
        chain2 = chain_for("ACDEFHIKL", "B")

        pair_list = SequenceAligner().align_chains(chain1, chain2).pairs

        assert pair_list.is_connected(0, 1)
        assert pair_list.is_connected(7, 8)
        assert not pair_list.is_connected(4, 5)
        assert not pair_list.is_connected(5, 6)
        assert [p.index for p in pair_list.pairs() if p.is_of_interest] == list(range(9))

    def test_missing_chain(self):
        """Test a missing chain gives an invalid result."""
        result = SequenceAligner().align_chains(None, chain_for("ACD"))

        assert not result.is_valid
        assert result.pairs is None

    def test_apply_inserts_gaps(self):
        """Test splicing makes both chains equal length and sets aligned flags."""
        chain1 = chain_for("ACDEFGHIKL")
        chain2 = chain_for("ACDEFHIKL", "B")
        aligner = SequenceAligner()

        result = aligner.align_chains(chain1, chain2)
        assert aligner.apply_to_chains(result, chain1, chain2)

        assert len(chain1) == len(chain2) == 10
        assert chain2.sequence == "ACDEF-HIKL"
        assert chain2[5].is_gap
        assert chain2[5].chain_id == "B"
        assert not chain1[5].aligned
        assert all(r.aligned for i, r in enumerate(chain1) if i != 5)
        assert all(r.aligned for r in chain2 if not r.is_gap)

    def test_apply_trailing_overhang(self):
        """Test an overhang becomes a gap at the end of the shorter chain."""
        chain1 = chain_for("ACDEFGHIKLW")
        chain2 = chain_for("ACDEFGHIKL", "B")
        aligner = SequenceAligner()

        aligner.apply_to_chains(aligner.align_chains(chain1, chain2), chain1, chain2)

        assert chain2.sequence == "ACDEFGHIKL-"
        assert not chain1[10].aligned

    def test_apply_replaces_existing_gaps(self):
        """Test realigning already spliced chains does not accumulate gaps."""
        chain1 = chain_for("ACDEFGHIKL")
        chain2 = chain_for("ACDEFHIKL", "B")
        aligner = SequenceAligner()
        aligner.apply_to_chains(aligner.align_chains(chain1, chain2), chain1, chain2)

        aligner.apply_to_chains(aligner.align_chains(chain1, chain2), chain1, chain2)

        assert len(chain1) == len(chain2) == 10
        assert chain2.count_residues() == 9

    def test_apply_invalid_alignment(self):
        """Test an invalid alignment leaves the chains untouched."""
        chain1 = chain_for("ACD")
        chain2 = chain_for("ACD", "B")
        aligner = SequenceAligner()

        assert not aligner.apply_to_chains(aligner.align_sequences("", ""), chain1, chain2)
        assert chain1.sequence == "ACD"

    def test_coordinates_are_untouched(self):
        """Test splicing keeps the residue objects and their coordinates."""
        chain1 = chain_for("ACDEFGHIKL")
        chain2 = chain_for("ACDEFHIKL", "B")
        before = [r.coords.copy() for r in chain2]
        aligner = SequenceAligner()

        aligner.apply_to_chains(aligner.align_chains(chain1, chain2), chain1, chain2)

        after = [r.coords for r in chain2 if not r.is_gap]
        assert np.allclose(before, after)
