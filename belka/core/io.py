"""Structure file handling and conversion to the residue model."""

import logging
from pathlib import Path

import gemmi
import numpy as np

from belka.core.model import (
    AA_THREE_TO_ONE,
    DNA_NUCLEOTIDE_MAP,
    Chain,
    Molecule,
    Residue,
    residue_letter,
)

logger = logging.getLogger(__name__)


def file_type(file_path: Path) -> str:
    """Get the file extension in lowercase."""
    return str(file_path.suffix).lower()


def validate_file(file_path: Path) -> bool:
    """Validate a single file with a specified type."""
    ftype = file_type(file_path)

    # GEMMI supports .pdb, .cif, .ent (PDB), .mmcif
    supported_formats = {".pdb", ".cif", ".ent", ".mmcif"}
    if ftype not in supported_formats:
        return False

    try:
        structure = gemmi.read_structure(str(file_path))
        if len(structure) == 0:
            logger.warning("No valid model can be extracted from %s", file_path)
            return False
        return True
    except (RuntimeError, ValueError, OSError) as e:
        logger.warning("File %s could not be parsed as %s file: %s", file_path, ftype, e)
        return False


def get_structure(file_path: Path) -> gemmi.Structure | None:
    """Load and return structure from file, or None if invalid."""
    if not validate_file(file_path):
        return None

    try:
        return gemmi.read_structure(str(file_path))
    except (RuntimeError, ValueError, OSError):
        logger.exception("Error loading structure from %s", file_path)
        return None


def representative_atom_name(residue_name: str) -> str | None:
    """CA for amino acids, P for nucleotides, None for anything else."""
    if residue_name in AA_THREE_TO_ONE:
        return "CA"
    if residue_name in DNA_NUCLEOTIDE_MAP:
        return "P"
    return None


def residue_from_gemmi(residue: gemmi.Residue, chain_id: str) -> Residue | None:
    """Reduce a GEMMI residue to its representative atom, None for ligands and water."""
    atom_name = representative_atom_name(residue.name)
    if atom_name is None:
        return None

    coords = None
    for atom in residue:
        if atom.name == atom_name:
            coords = np.array([atom.pos.x, atom.pos.y, atom.pos.z], dtype=float)
            break
    if coords is None:
        logger.debug("Residue %s %s lacks atom %s", residue.name, residue.seqid.num, atom_name)

    return Residue(
        name=residue.name,
        letter=residue_letter(residue.name),
        serial=residue.seqid.num,
        chain_id=chain_id,
        atom_name=atom_name,
        coords=coords,
    )


def chain_from_gemmi(chain: gemmi.Chain) -> Chain:
    """Convert a GEMMI chain, keeping polymer residues only."""
    residues = []
    for gemmi_residue in chain:
        residue = residue_from_gemmi(gemmi_residue, chain.name)
        if residue is not None:
            residues.append(residue)
    result = Chain(chain.name, residues)
    result.link_residues()
    return result


def molecule_from_structure(structure: gemmi.Structure, name: str = "") -> Molecule:
    """Build a molecule from the first model of a structure; empty chains are dropped."""
    molecule = Molecule(name or getattr(structure, "name", ""))
    for gemmi_chain in structure[0]:
        chain = chain_from_gemmi(gemmi_chain)
        if len(chain) == 0:
            continue
        if molecule.get_chain(chain.chain_id) is not None:
            logger.debug("Skipping repeated chain id %s", chain.chain_id)
            continue
        molecule.chains.append(chain)
    logger.info(
        "Loaded %d chains with %d residues from %s",
        len(molecule.chains),
        sum(len(c) for c in molecule.chains),
        molecule.name,
    )
    return molecule


def load_molecule(file_path: Path) -> Molecule | None:
    """Read a structure file straight into the residue model."""
    structure = get_structure(file_path)
    if structure is None:
        return None
    return molecule_from_structure(structure, Path(file_path).stem)
