"""Group annotation files: one rigid block id per non-gap residue."""

import gzip
import logging
import zlib
from collections.abc import Sequence
from pathlib import Path

from belka.core.model import Molecule

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def save_groups(output_path: Path, molecules: Sequence[Molecule], compress: bool = True) -> int:
    """
    Write group ids of all non-gap residues in traversal order.

    Args:
        output_path: Destination file
        molecules: Molecules whose residues are written
        compress: Write gzip-compressed output

    Returns:
        Number of annotations written

    Raises:
        OSError: If file cannot be written
    """
    ids = [str(residue.group_id) for molecule in molecules for residue in molecule.residues()]
    text = "".join(f"{gid}\n" for gid in ids)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if compress:
            with gzip.open(output_path, "wt") as handle:
                handle.write(text)
        else:
            output_path.write_text(text)
    except OSError as e:
        raise OSError(f"Failed to save group file to {output_path}: {e}") from e
    logger.debug("Saved %d group annotations to %s", len(ids), output_path)
    return len(ids)


def load_groups(input_path: Path, molecules: Sequence[Molecule]) -> bool:
    """
    Apply group ids from an annotation file.

    The file may be gzip-compressed or plain text. Nothing is applied unless
    the number of annotations equals the number of non-gap residues.

    Returns:
        True if the annotations were applied
    """
    try:
        raw = input_path.read_bytes()
        if raw.startswith(GZIP_MAGIC):
            raw = gzip.decompress(raw)
        lines = raw.decode().splitlines()
        group_ids = [int(line) for line in lines if line.strip()]
    except (OSError, EOFError, ValueError, zlib.error) as e:
        logger.warning("Could not read group file %s: %s", input_path, e)
        return False

    residues = [residue for molecule in molecules for residue in molecule.residues()]
    if len(group_ids) != len(residues):
        logger.warning(
            "Group file %s has %d annotations for %d residues",
            input_path,
            len(group_ids),
            len(residues),
        )
        return False

    for residue, gid in zip(residues, group_ids):
        residue.group_id = gid
    return True
