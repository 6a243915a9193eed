"""
Normal modes of an anisotropic elastic network.

Representative atoms closer than ENM_CUTOFF are joined by harmonic springs.
Springs inside one rigid block can be stiffened (or softened) by a gamma
multiplier. The Hessian of the network is diagonalised to give the modes.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd

from belka.core.model import Chain, Molecule, Residue

logger = logging.getLogger(__name__)

ENM_CUTOFF = 15.0


@dataclass
class ModeSet:
    """
    Eigendecomposition of an elastic network Hessian.

    Attributes:
        hessian: Symmetric (3R, 3R) Hessian
        eigenvalues: Ascending eigenvalues
        eigenvectors: Column eigenvectors, eigenvectors[:, k] is mode k
        residues: Residues in Hessian order
    """

    hessian: np.ndarray
    eigenvalues: np.ndarray
    eigenvectors: np.ndarray
    residues: list[Residue] = field(default_factory=list)

    @property
    def n_modes(self) -> int:
        return len(self.eigenvalues)

    @staticmethod
    def format_matrix(matrix: np.ndarray) -> str:
        """One line per matrix row, ``%10.5f`` per element."""
        return "\n".join("".join(f"{value:10.5f}" for value in row) for row in matrix)

    def format_hessian(self) -> str:
        return self.format_matrix(self.hessian)

    def format_modes(self) -> str:
        return self.format_matrix(self.eigenvectors)

    def save_matrix(self, matrix: np.ndarray, output_path: Path) -> None:
        """
        Write a formatted matrix dump.

        Raises:
            OSError: If file cannot be written
        """
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(self.format_matrix(matrix) + "\n")
        except OSError as e:
            raise OSError(f"Failed to save matrix to {output_path}: {e}") from e

    def to_dataframe(self, n_modes: int | None = None) -> pd.DataFrame:
        """
        Per-residue mode components as a DataFrame.

        Args:
            n_modes: Number of lowest modes to include (default all)

        Returns:
            DataFrame with columns: chain_id, serial, group_id and
            mode<k>_x, mode<k>_y, mode<k>_z for each mode k
        """
        n_modes = self.n_modes if n_modes is None else min(n_modes, self.n_modes)
        data = {
            "chain_id": [r.chain_id for r in self.residues],
            "serial": [r.serial for r in self.residues],
            "group_id": [r.group_id for r in self.residues],
        }
        for k in range(n_modes):
            components = self.eigenvectors[:, k].reshape(-1, 3)
            for axis, name in enumerate("xyz"):
                data[f"mode{k + 1}_{name}"] = components[:, axis]
        return pd.DataFrame(data)

    def save_to_csv(self, output_path: Path, n_modes: int | None = None) -> None:
        """
        Export mode components to CSV file.

        Raises:
            OSError: If file cannot be written
        """
        try:
            df = self.to_dataframe(n_modes)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(output_path, index=False)
        except OSError as e:
            raise OSError(f"Failed to save CSV to {output_path}: {e}") from e


class NormalModeCalculator:
    """
    Anisotropic network model over representative atoms.

    Example:
        >>> calculator = NormalModeCalculator()
        >>> n_modes = calculator.calculate_modes(molecule, rigid_gamma=10.0)
        >>> print(calculator.modes.format_modes())
    """

    def __init__(self, cutoff: float = ENM_CUTOFF) -> None:
        self.cutoff = cutoff
        self.modes: ModeSet | None = None

    def build_hessian(self, residues: list[Residue], rigid_gamma: float = 1.0) -> np.ndarray:
        """
        Assemble the (3R, 3R) network Hessian.

        Springs between residues of the same rigid block (group id > 0) get
        stiffness rigid_gamma, all others stiffness 1.
        """
        n_res = len(residues)
        coords = np.array([r.coords for r in residues], dtype=float).reshape(n_res, 3)
        groups = np.array([r.group_id for r in residues], dtype=int)

        diff = coords[:, None, :] - coords[None, :, :]
        dist2 = np.sum(diff * diff, axis=-1)
        springs = dist2 <= self.cutoff * self.cutoff
        np.fill_diagonal(springs, False)

        coincident = springs & (dist2 == 0)
        if coincident.any():
            logger.warning(
                "%d pairs of coincident atoms left out of the network", int(coincident.sum()) // 2
            )
            springs &= ~coincident

        gamma = np.where((groups[:, None] == groups[None, :]) & (groups[:, None] > 0), rigid_gamma, 1.0)
        weight = np.zeros_like(dist2)
        weight[springs] = gamma[springs] / dist2[springs]

        # Off-diagonal blocks -γ·ΔrΔrᵗ/|Δr|², diagonal blocks balance each row
        blocks = -weight[:, :, None, None] * diff[:, :, :, None] * diff[:, :, None, :]
        blocks[np.arange(n_res), np.arange(n_res)] = -blocks.sum(axis=1)
        return blocks.transpose(0, 2, 1, 3).reshape(3 * n_res, 3 * n_res)

    def calculate_modes(
        self,
        source: Molecule | Chain | Iterable[Chain] | None,
        rigid_gamma: float = 1.0,
        selected: bool = False,
    ) -> int:
        """
        Compute normal modes of a molecule or of selected chains.

        Args:
            source: Molecule, single chain or iterable of chains
            rigid_gamma: Spring multiplier inside rigid blocks
            selected: Only use selected residues

        Returns:
            Number of modes (3 per residue), 0 if nothing was computed
        """
        self.modes = None
        if source is None:
            logger.warning("No molecule found")
            return 0

        if isinstance(source, Molecule):
            chains = source.chains
        elif isinstance(source, Chain):
            chains = [source]
        else:
            chains = list(source)

        residues = [
            residue
            for chain in chains
            for residue in chain
            if not residue.is_gap and residue.has_coords and (residue.selected or not selected)
        ]
        if not residues:
            logger.warning("No selected residues found" if selected else "No residues found")
            return 0

        hessian = self.build_hessian(residues, rigid_gamma)
        try:
            eigenvalues, eigenvectors = np.linalg.eigh(hessian)
        except np.linalg.LinAlgError:
            logger.warning("Hessian diagonalisation did not converge for %d residues", len(residues))
            return 0

        self.modes = ModeSet(hessian, eigenvalues, eigenvectors, residues)
        logger.info("Computed %d normal modes", self.modes.n_modes)
        return self.modes.n_modes
