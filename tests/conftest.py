"""
Shared test fixtures and helpers for synthetic chains and GEMMI-compatible mocks
"""

import math
from unittest.mock import Mock

import numpy as np
import pytest

from belka.core.model import Chain
from belka.core.structural import axis_angle_matrix

HINGE_LENGTH = 24
HINGE_PIVOT = 12


def helix_coords(n_residues, radius_x=2.3, radius_y=1.6, rise=1.5, step_degrees=100.0):
    """Cα trace of an elliptical helix along z with ~3.8 Å between neighbours"""
    angles = np.radians(step_degrees) * np.arange(n_residues)
    return np.column_stack(
        [radius_x * np.cos(angles), radius_y * np.sin(angles), rise * np.arange(n_residues)]
    )


def rotation_z(degrees):
    theta = math.radians(degrees)
    return np.array(
        [
            [math.cos(theta), -math.sin(theta), 0.0],
            [math.sin(theta), math.cos(theta), 0.0],
            [0.0, 0.0, 1.0],
        ]
    )


def hinge_coords():
    """Two conformations; the second half is swung by 90° about x through the pivot"""
    coords1 = helix_coords(HINGE_LENGTH)
    coords2 = coords1.copy()
    pivot = coords1[HINGE_PIVOT]
    rotation = axis_angle_matrix(np.array([1.0, 0.0, 0.0]), math.radians(90.0))
    coords2[HINGE_PIVOT:] = (coords1[HINGE_PIVOT:] - pivot) @ rotation.T + pivot
    return coords1, coords2


@pytest.fixture
def poly_ala_pair():
    """Ten-residue poly-alanine and a copy rotated 30° about z, shifted by (1, 0, 0)"""
    coords1 = helix_coords(10)
    coords2 = coords1 @ rotation_z(30.0).T + np.array([1.0, 0.0, 0.0])
    return (
        Chain.from_coordinates("A", "A" * 10, coords1),
        Chain.from_coordinates("A", "A" * 10, coords2),
    )


@pytest.fixture
def hinge_pair():
    """Two-domain chain pair with a 90° hinge motion at the pivot residue"""
    coords1, coords2 = hinge_coords()
    sequence = "MKVLAEGTRSWQ" + "HNDFPCIYKLAE"
    return (
        Chain.from_coordinates("A", sequence, coords1),
        Chain.from_coordinates("B", sequence, coords2),
    )


def create_mock_gemmi_atom(name, x=0.0, y=0.0, z=0.0):
    """Create a GEMMI-compatible mock atom"""
    atom = Mock()
    atom.name = name
    pos = Mock()
    pos.x = x
    pos.y = y
    pos.z = z
    atom.pos = pos
    return atom


def create_mock_gemmi_residue(resname, seqid_num=1, coords=(0.0, 0.0, 0.0), atom_name=None):
    """Create a GEMMI-compatible mock residue"""
    residue = Mock()
    residue.name = resname

    # GEMMI uses seqid with num and icode attributes
    seqid = Mock()
    seqid.num = seqid_num
    seqid.icode = None
    residue.seqid = seqid

    if atom_name is None:
        atom_name = "P" if resname in ["DA", "DT", "DG", "DC"] else "CA"
    atoms = [create_mock_gemmi_atom("N"), create_mock_gemmi_atom(atom_name, *coords)]
    residue.__iter__ = lambda self: iter(atoms)
    return residue


def create_mock_gemmi_chain(chain_name, residues):
    """Create a GEMMI-compatible mock chain"""
    chain = Mock()
    chain.name = chain_name
    chain.__iter__ = lambda self: iter(residues)
    return chain


def create_mock_gemmi_model(chains):
    """Create a GEMMI-compatible mock model"""
    model = Mock()
    model.__iter__ = lambda self: iter(chains)
    return model


def create_mock_gemmi_structure(chains):
    """Create a GEMMI-compatible mock structure"""
    structure = Mock()
    model = create_mock_gemmi_model(chains)
    structure.__iter__ = lambda self: iter([model])
    structure.__len__ = lambda self: 1
    structure.__getitem__ = lambda self, idx: model if idx == 0 else None
    return structure
