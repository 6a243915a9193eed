"""
Minimal molecule model: residues reduced to one representative atom.

Amino acids are represented by their Cα atom and nucleotides by their P atom.
Chains are plain ordered lists of residues which may contain gap placeholders
after an alignment has been spliced into them.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)

GAP_CHAR = "-"
GAP_NAME = "GAP"

# Maximum distance between representative atoms of bonded consecutive residues
BOND_CUTOFFS = {
    "CA": 4.2,
    "P": 7.5,
}


# Define DNA nucleotide mapping
DNA_NUCLEOTIDE_MAP = {
    "DA": "A",
    "A": "A",
    "DT": "T",
    "T": "T",
    "DG": "G",
    "G": "G",
    "DC": "C",
    "C": "C",
    "U": "U",
    "DU": "U",
}

# Mapping from 3-letter to 1-letter codes
AA_THREE_TO_ONE = {
    "ALA": "A",
    "CYS": "C",
    "ASP": "D",
    "GLU": "E",
    "PHE": "F",
    "GLY": "G",
    "HIS": "H",
    "ILE": "I",
    "LYS": "K",
    "LEU": "L",
    "MET": "M",
    "ASN": "N",
    "PRO": "P",
    "GLN": "Q",
    "ARG": "R",
    "SER": "S",
    "THR": "T",
    "VAL": "V",
    "TRP": "W",
    "TYR": "Y",
}
AA_ONE_TO_THREE = {letter: name for name, letter in AA_THREE_TO_ONE.items()}


def residue_letter(name: str) -> str:
    """One-letter code for a residue name, X if unknown."""
    if name in AA_THREE_TO_ONE:
        return AA_THREE_TO_ONE[name]
    return DNA_NUCLEOTIDE_MAP.get(name, "X")


def residue_name(letter: str, atom_name: str = "CA") -> str:
    """Residue name for a one-letter code: three-letter for amino acids, the letter itself for nucleotides."""
    if atom_name == "P":
        return letter
    return AA_ONE_TO_THREE.get(letter, "UNK")


@dataclass(eq=False)
class Residue:
    """
    A residue reduced to its representative atom.

    Attributes:
        name: Residue name as in the structure file, three letters for amino acids (GAP for placeholders)
        letter: One-letter code used for sequence alignment
        serial: Residue sequence number
        chain_id: Identifier of the owning chain
        atom_name: Name of the representative atom (CA or P)
        coords: Representative atom position, None if missing
        group_id: Rigid block id (0 = unassigned)
        aligned: True if the counterpart in the other chain is not a gap
        selected: Selection flag used to restrict fits and mode calculations
    """

    name: str
    letter: str = "X"
    serial: int = 0
    chain_id: str = ""
    atom_name: str = "CA"
    coords: np.ndarray | None = None
    group_id: int = 0
    aligned: bool = False
    selected: bool = True
    _bonded: list["Residue"] = field(default_factory=list, repr=False)

    @classmethod
    def create_gap(cls, chain_id: str = "") -> "Residue":
        """Create a gap placeholder residue."""
        return cls(name=GAP_NAME, letter=GAP_CHAR, chain_id=chain_id, atom_name="")

    @property
    def is_gap(self) -> bool:
        return self.name == GAP_NAME

    @property
    def has_coords(self) -> bool:
        return self.coords is not None

    def connect(self, other: "Residue") -> None:
        """Record a chemical bond between two residues (symmetric)."""
        if other is self:
            return
        if not any(r is other for r in self._bonded):
            self._bonded.append(other)
        if not any(r is self for r in other._bonded):
            other._bonded.append(self)

    def is_connected_to(self, other: "Residue") -> bool:
        return any(r is other for r in self._bonded)


@dataclass(eq=False)
class Chain:
    """Ordered residues of one chain, possibly interleaved with gaps."""

    chain_id: str
    residues: list[Residue] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.residues)

    def __iter__(self) -> Iterator[Residue]:
        return iter(self.residues)

    def __getitem__(self, index: int) -> Residue:
        return self.residues[index]

    @property
    def sequence(self) -> str:
        return "".join(r.letter for r in self.residues)

    def count_residues(self) -> int:
        """Number of non-gap residues."""
        return sum(1 for r in self.residues if not r.is_gap)

    def remove_gaps(self) -> int:
        """Drop gap placeholders, returning how many were removed."""
        kept = [r for r in self.residues if not r.is_gap]
        removed = len(self.residues) - len(kept)
        self.residues = kept
        return removed

    def link_residues(self) -> int:
        """
        Bond consecutive residues whose representative atoms are close enough.

        Returns:
            Number of bonds created
        """
        n_bonds = 0
        previous = None
        for residue in self.residues:
            if residue.is_gap:
                continue
            if previous is not None and previous.has_coords and residue.has_coords:
                cutoff = BOND_CUTOFFS.get(residue.atom_name, BOND_CUTOFFS["CA"])
                if np.linalg.norm(residue.coords - previous.coords) <= cutoff:
                    previous.connect(residue)
                    n_bonds += 1
                else:
                    logger.debug(
                        "Chain break in %s between %d and %d",
                        self.chain_id,
                        previous.serial,
                        residue.serial,
                    )
            previous = residue
        return n_bonds

    @classmethod
    def from_coordinates(
        cls,
        chain_id: str,
        sequence: str,
        coords: Sequence | np.ndarray,
        first_serial: int = 1,
        atom_name: str = "CA",
    ) -> "Chain":
        """
        Build a bonded chain from a one-letter sequence and coordinates.

        Args:
            chain_id: Chain identifier
            sequence: One-letter codes, one per residue
            coords: Representative atom positions, shape (len(sequence), 3)
            first_serial: Serial number of the first residue
            atom_name: Representative atom name

        Returns:
            Chain with consecutive residues linked
        """
        coords = np.asarray(coords, dtype=float)
        if coords.shape != (len(sequence), 3):
            raise ValueError(
                f"Expected coordinates of shape ({len(sequence)}, 3), got {coords.shape}"
            )
        residues = [
            Residue(
                name=residue_name(letter, atom_name),
                letter=letter,
                serial=first_serial + i,
                chain_id=chain_id,
                atom_name=atom_name,
                coords=coords[i].copy(),
            )
            for i, letter in enumerate(sequence)
        ]
        chain = cls(chain_id, residues)
        chain.link_residues()
        return chain


@dataclass(eq=False)
class Molecule:
    """Named collection of chains."""

    name: str
    chains: list[Chain] = field(default_factory=list)

    def residues(self) -> Iterator[Residue]:
        """Yield non-gap residues in traversal order."""
        for chain in self.chains:
            for residue in chain:
                if not residue.is_gap:
                    yield residue

    def get_chain(self, chain_id: str) -> Chain | None:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        return None
