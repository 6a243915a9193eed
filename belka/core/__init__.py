"""Core modules for alignment, superposition and rigid block detection."""

from belka.core.io import get_structure, load_molecule, validate_file
from belka.core.model import Chain, Molecule, Residue
from belka.core.pairs import PairList, ResiduePair
from belka.core.rigid import RigidBlockFinder
from belka.core.sequences import AlignmentResult, SequenceAligner
from belka.core.structural import FitResult, Transform, fit_chains, superimpose

__all__ = [
    "AlignmentResult",
    "Chain",
    "FitResult",
    "Molecule",
    "PairList",
    "Residue",
    "ResiduePair",
    "RigidBlockFinder",
    "SequenceAligner",
    "Transform",
    "fit_chains",
    "get_structure",
    "load_molecule",
    "superimpose",
    "validate_file",
]
