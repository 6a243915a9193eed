"""Tests for elastic network normal modes."""

import numpy as np
import pandas as pd
import pytest

from belka.analysis.modes import ModeSet, NormalModeCalculator
from belka.core.model import Chain, Molecule
from conftest import helix_coords


def helix_chain(n_residues=10):
    return Chain.from_coordinates("A", "A" * n_residues, helix_coords(n_residues))


def two_atom_chain(distance, group_id=0):
    coords = np.array([[0.0, 0.0, 0.0], [distance, 0.0, 0.0]])
    chain = Chain.from_coordinates("A", "GG", coords)
    for residue in chain:
        residue.group_id = group_id
    return chain


class TestHessian:
    """Test the network Hessian."""

    def test_shape_and_symmetry(self):
        """Test the Hessian is square over three coordinates per residue and symmetric."""
        chain = helix_chain()
        hessian = NormalModeCalculator().build_hessian(chain.residues)

        assert hessian.shape == (30, 30)
        assert np.allclose(hessian, hessian.T)

    def test_rigid_translation_is_free(self):
        """Test a uniform translation costs no energy."""
        hessian = NormalModeCalculator().build_hessian(helix_chain().residues)

        for axis in range(3):
            shift = np.zeros(30)
            shift[axis::3] = 1.0
            assert np.allclose(hessian @ shift, 0.0)

    def test_single_spring(self):
        """Test one spring along x couples only the x components."""
        hessian = NormalModeCalculator().build_hessian(two_atom_chain(5.0).residues)

        expected = np.zeros((6, 6))
        expected[0, 0] = expected[3, 3] = 1.0
        expected[0, 3] = expected[3, 0] = -1.0
        assert np.allclose(hessian, expected)

    def test_cutoff(self):
        """Test atoms beyond the cutoff are not connected."""
        hessian = NormalModeCalculator(cutoff=15.0).build_hessian(two_atom_chain(20.0).residues)

        assert not hessian.any()

    def test_gamma_inside_rigid_block(self):
        """Test springs inside one rigid block are scaled by gamma."""
        calculator = NormalModeCalculator()

        plain = calculator.build_hessian(two_atom_chain(5.0, group_id=1).residues)
        stiff = calculator.build_hessian(two_atom_chain(5.0, group_id=1).residues, rigid_gamma=10.0)

        assert np.allclose(stiff, 10.0 * plain)

    def test_gamma_ignored_for_unassigned(self):
        """Test springs between unassigned residues keep unit stiffness."""
        calculator = NormalModeCalculator()

        plain = calculator.build_hessian(two_atom_chain(5.0).residues)
        scaled = calculator.build_hessian(two_atom_chain(5.0).residues, rigid_gamma=10.0)

        assert np.allclose(scaled, plain)

    def test_coincident_atoms_skipped(self):
        """Test atoms at the same position do not produce a spring."""
        hessian = NormalModeCalculator().build_hessian(two_atom_chain(0.0).residues)

        assert not np.isnan(hessian).any()
        assert not hessian.any()


class TestCalculateModes:
    """Test mode calculation."""

    def test_three_modes_per_residue(self):
        """Test the number of modes and the six rigid-body zero modes."""
        calculator = NormalModeCalculator()

        assert calculator.calculate_modes(helix_chain()) == 30

        eigenvalues = calculator.modes.eigenvalues
        assert np.allclose(eigenvalues[:6], 0.0, atol=1e-8)
        assert eigenvalues[6] > 1e-4
        assert np.all(np.diff(eigenvalues) >= -1e-10)

    def test_molecule_source(self):
        """Test a whole molecule is accepted."""
        molecule = Molecule("test", [helix_chain(5)])
        calculator = NormalModeCalculator()

        assert calculator.calculate_modes(molecule) == 15
        assert len(calculator.modes.residues) == 5

    def test_selected_only(self):
        """Test deselected residues are left out of the network."""
        chain = helix_chain()
        for residue in chain.residues[5:]:
            residue.selected = False
        calculator = NormalModeCalculator()

        assert calculator.calculate_modes(chain, selected=True) == 15
        assert calculator.calculate_modes(chain) == 30

    def test_nothing_selected(self):
        """Test an empty selection computes nothing."""
        chain = helix_chain(4)
        for residue in chain:
            residue.selected = False

        assert NormalModeCalculator().calculate_modes([chain], selected=True) == 0

    def test_no_molecule(self):
        """Test a missing molecule computes nothing."""
        calculator = NormalModeCalculator()

        assert calculator.calculate_modes(None) == 0
        assert calculator.modes is None

    def test_empty_chain(self):
        """Test a chain without residues computes nothing."""
        assert NormalModeCalculator().calculate_modes(Chain("A")) == 0


class TestModeSetOutput:
    """Test formatting and export of modes."""

    def test_format_matrix(self):
        """Test matrix dumps use ten-wide five-decimal columns."""
        text = ModeSet.format_matrix(np.array([[1.0, -0.5], [0.0, 2.0]]))

        assert text.splitlines() == ["   1.00000  -0.50000", "   0.00000   2.00000"]

    def test_save_matrix(self, tmp_path):
        """Test the Hessian dump has one line per row."""
        calculator = NormalModeCalculator()
        calculator.calculate_modes(helix_chain(4))
        output = tmp_path / "hessian.txt"

        calculator.modes.save_matrix(calculator.modes.hessian, output)

        assert len(output.read_text().splitlines()) == 12

    def test_to_dataframe(self):
        """Test the lowest modes are exported per residue."""
        calculator = NormalModeCalculator()
        calculator.calculate_modes(helix_chain(6))

        df = calculator.modes.to_dataframe(n_modes=2)

        assert len(df) == 6
        assert list(df.columns) == [
            "chain_id",
            "serial",
            "group_id",
            "mode1_x",
            "mode1_y",
            "mode1_z",
            "mode2_x",
            "mode2_y",
            "mode2_z",
        ]
        components = df[["mode1_x", "mode1_y", "mode1_z"]].to_numpy()
        assert np.sum(components * components) == pytest.approx(1.0)

    def test_save_to_csv(self, tmp_path):
        """Test CSV export of the modes."""
        calculator = NormalModeCalculator()
        calculator.calculate_modes(helix_chain(6))
        output = tmp_path / "modes" / "modes.csv"

        calculator.modes.save_to_csv(output, n_modes=7)

        df = pd.read_csv(output)
        assert "mode7_z" in df.columns
        assert "mode8_x" not in df.columns
