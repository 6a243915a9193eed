"""
Relative motion of rigid blocks between two conformations.

Every block found by the rigid block finder is superimposed on its own. The
per-block transforms give displacement fields, fractional interpolations
between the conformations and a screw-axis description of how one block
moves relative to another.
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from belka.core.model import Chain
from belka.core.pairs import NO_NODE, PairList, ResiduePair
from belka.core.structural import FitResult, Transform, axis_angle_matrix, superimpose

logger = logging.getLogger(__name__)

MIN_ANGLE = 1e-6


@dataclass
class ScrewMotion:
    """
    Screw decomposition of one block's motion relative to a reference block.

    Attributes:
        reference_block: Id of the block held fixed
        moving_block: Id of the block that moves
        axis: Unit screw axis
        angle: Rotation about the axis (radians)
        translation_parallel: Signed translation along the axis (Å)
        translation_perpendicular: Translation component normal to the axis
        axis_point: Point on the screw axis in original coordinates, None for
            a pure translation
        displacement: Mean displacement of the moving block under the
            reference block's fit (Å)
    """

    reference_block: int
    moving_block: int
    axis: np.ndarray
    angle: float
    translation_parallel: float
    translation_perpendicular: np.ndarray
    axis_point: np.ndarray | None
    displacement: float = 0.0

    @property
    def angle_degrees(self) -> float:
        return math.degrees(self.angle)


def screw_decomposition(transform: Transform) -> tuple[float, np.ndarray, np.ndarray | None]:
    """
    Split a transform into translation along its axis and an axis offset.

    Returns:
        (parallel translation, perpendicular translation, point on the axis
        in the transform's centered frame or None for a pure translation)
    """
    axis = transform.axis
    translation = transform.translation
    parallel = float(np.dot(translation, axis))
    perpendicular = translation - parallel * axis
    half = 0.5 * transform.angle
    if abs(math.sin(half)) < MIN_ANGLE:
        return parallel, perpendicular, None
    # Solves (I - R)·q = perpendicular with q normal to the axis
    point = 0.5 * (perpendicular + np.cross(axis, perpendicular) / math.tan(half))
    return parallel, perpendicular, point


class _BlockFits:
    """Global and per-block superpositions of conformation 2 onto 1."""

    def __init__(self, chains1: Sequence[Chain], chains2: Sequence[Chain]) -> None:
        self.pair_list = PairList.from_chains(chains1, chains2)
        for pair in self.pair_list.pairs():
            residue1, residue2 = pair.residue1, pair.residue2
            pair.group_id = residue1.group_id if residue1.group_id == residue2.group_id else 0

        self._rows: list[ResiduePair] = [
            pair
            for pair in self.pair_list.pairs()
            if pair.is_of_interest and pair.residue1.has_coords and pair.residue2.has_coords
        ]
        self.n_blocks = max((p.group_id for p in self._rows), default=0)
        self.fits: list[FitResult | None] = [None] * (self.n_blocks + 1)

        if len(self._rows) < 3:
            logger.warning("Only %d aligned residues, no motion analysis possible", len(self._rows))
            self.center = np.zeros(3)
            return

        self.center = np.mean([p.residue1.coords for p in self._rows], axis=0)
        self.fits[0] = self._fit(self._rows)
        for block in range(1, self.n_blocks + 1):
            members = [p for p in self._rows if p.group_id == block]
            fit = self._fit(members)
            if fit.success:
                self.fits[block] = fit
            else:
                logger.warning("Not enough aligned residues in rigid block %d", block)

    def _fit(self, pairs: list[ResiduePair]) -> FitResult:
        return superimpose(
            [p.residue1.coords for p in pairs],
            [p.residue2.coords for p in pairs],
            center=self.center,
        )

    def transform(self, block: int) -> Transform | None:
        """Transform of a block (0 = global fit), None if unavailable."""
        if block < 0 or block > self.n_blocks or self.fits[block] is None:
            return None
        return self.fits[block].transform


class DisplacementField(_BlockFits):
    """
    Per-residue displacement vectors between two aligned conformations.

    Example:
        >>> field = DisplacementField([chain1], [chain2])
        >>> vectors = field.displacements()
        >>> field.save_to_csv(vectors, Path("displacements.csv"))
    """

    def displacements(self, per_block: bool = False) -> np.ndarray:
        """
        Fitted conformation 2 position minus conformation 1 position.

        Args:
            per_block: Use each residue's own block fit instead of the
                global fit where one exists

        Returns:
            Array of shape (N, 3), empty if no global fit exists
        """
        global_transform = self.transform(0)
        if global_transform is None:
            logger.warning("No global transformation found")
            return np.empty((0, 3))

        vectors = np.zeros((len(self._rows), 3))
        for i, pair in enumerate(self._rows):
            transform = global_transform
            if per_block and pair.group_id > 0:
                transform = self.transform(pair.group_id) or global_transform
            vectors[i] = transform.apply(pair.residue2.coords) - pair.residue1.coords
        return vectors

    def interpolate(self, static_block: int, fraction: float, screw: bool = False) -> np.ndarray:
        """
        Displacement of conformation 1 residues by a fraction of each block's
        motion relative to a static block.

        Args:
            static_block: Block held fixed (0 = global frame)
            fraction: Interpolation fraction in [0, 1]
            screw: Rotate blocks about their screw axis instead of the center

        Returns:
            Array of shape (N, 3), empty on invalid input
        """
        if not 0.0 <= fraction <= 1.0:
            logger.warning("Interpolation fraction should be between 0 and 1, got %s", fraction)
            return np.empty((0, 3))
        if static_block < 0 or static_block > self.n_blocks:
            logger.warning("Wrong static block %s", static_block)
            return np.empty((0, 3))
        reference = self.transform(static_block)
        global_transform = self.transform(0)
        if reference is None or global_transform is None:
            logger.warning("No reference transformation for block %d", static_block)
            return np.empty((0, 3))

        # Fractional rotation, translation and axis point per block
        fractional: dict[int, tuple[np.ndarray, np.ndarray, np.ndarray]] = {}
        for block in range(1, self.n_blocks + 1):
            transform = self.transform(block)
            if transform is None:
                logger.warning("No transformation for block %d", block)
                return np.empty((0, 3))
            local = transform.relative_to(reference)
            # Negative fraction since local maps conformation 2 onto 1
            rotation = axis_angle_matrix(local.axis, -fraction * local.angle)
            translation = -fraction * local.translation
            shift = np.zeros(3)
            if screw:
                parallel, _, point = screw_decomposition(local)
                if point is not None:
                    shift = point
                    translation = -fraction * parallel * local.axis
            fractional[block] = (rotation, translation, shift)

        vectors = np.zeros((len(self._rows), 3))
        for i, pair in enumerate(self._rows):
            x1 = pair.residue1.coords - self.center
            if pair.group_id in fractional:
                rotation, translation, shift = fractional[pair.group_id]
                x = x1 - shift
                vectors[i] = rotation @ x + translation - x
            else:
                x2 = pair.residue2.coords - self.center
                vectors[i] = fraction * (
                    global_transform.rotation @ x2 + global_transform.translation - x1
                )
        return vectors

    @staticmethod
    def format_vectors(vectors: np.ndarray) -> str:
        """Single line with three ``%8.4f`` values per residue."""
        return "".join(f"{value:8.4f} " for value in np.asarray(vectors).ravel())

    def to_dataframe(self, vectors: np.ndarray) -> pd.DataFrame:
        """
        Convert displacement vectors to a pandas DataFrame.

        Args:
            vectors: Output of displacements() or interpolate()

        Returns:
            DataFrame with columns: chain_id1, serial1, chain_id2, serial2,
                                   group_id, dx, dy, dz, magnitude
        """
        if len(vectors) != len(self._rows):
            raise ValueError(
                f"Expected {len(self._rows)} displacement vectors, got {len(vectors)}"
            )
        data = [
            {
                "chain_id1": pair.residue1.chain_id,
                "serial1": pair.residue1.serial,
                "chain_id2": pair.residue2.chain_id,
                "serial2": pair.residue2.serial,
                "group_id": pair.group_id,
                "dx": vector[0],
                "dy": vector[1],
                "dz": vector[2],
                "magnitude": float(np.linalg.norm(vector)),
            }
            for pair, vector in zip(self._rows, vectors)
        ]
        return pd.DataFrame(data)

    def save_to_csv(self, vectors: np.ndarray, output_path: Path) -> None:
        """
        Export displacement vectors to CSV file.

        Raises:
            OSError: If file cannot be written
        """
        try:
            df = self.to_dataframe(vectors)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(output_path, index=False)
        except OSError as e:
            raise OSError(f"Failed to save CSV to {output_path}: {e}") from e


class MotionAnalyzer(_BlockFits):
    """Relative motions between rigid blocks and their hierarchy."""

    def residual_displacement(self, reference_block: int, moving_block: int) -> float:
        """
        Mean displacement of a block's residues after fitting with another
        block's transform, |Σ (x1 - T(x2))| / n.
        """
        transform = self.transform(reference_block)
        members = [p for p in self._rows if p.group_id == moving_block]
        if transform is None or not members:
            return math.inf
        total = np.zeros(3)
        for pair in members:
            total += pair.residue1.coords - transform.apply(pair.residue2.coords)
        return float(np.linalg.norm(total)) / len(members)

    def relative_motion(self, reference_block: int, moving_block: int) -> ScrewMotion | None:
        """Screw motion of moving_block with reference_block held fixed."""
        reference = self.transform(reference_block)
        moving = self.transform(moving_block)
        if reference is None or moving is None:
            logger.warning(
                "Missing transformation for blocks %d and %d", reference_block, moving_block
            )
            return None
        local = moving.relative_to(reference)
        parallel, perpendicular, point = screw_decomposition(local)
        return ScrewMotion(
            reference_block=reference_block,
            moving_block=moving_block,
            axis=local.axis,
            angle=local.angle,
            translation_parallel=parallel,
            translation_perpendicular=perpendicular,
            axis_point=None if point is None else point + self.center,
            displacement=self.residual_displacement(reference_block, moving_block),
        )

    def relative_motions(self, static_block: int) -> list[ScrewMotion]:
        """Motions of every other block relative to a static block."""
        motions = []
        for block in range(1, self.n_blocks + 1):
            if block == static_block:
                continue
            motion = self.relative_motion(static_block, block)
            if motion is not None:
                motions.append(motion)
        return motions

    def _adjacent_blocks(self) -> set[tuple[int, int]]:
        """Block pairs that follow each other along a chain."""
        adjacent = set()
        pl = self.pair_list
        for node in pl:
            block = pl[node].group_id
            if not pl[node].is_of_interest or block <= 0:
                continue
            chain_id = pl[node].residue1.chain_id
            following = pl.next(node)
            while following != NO_NODE and pl[following].residue1.chain_id == chain_id:
                other = pl[following].group_id
                if other != 0 and other != block:
                    adjacent.add((block, other))
                    adjacent.add((other, block))
                    break
                following = pl.next(following)
        return adjacent

    def rank_motions(self) -> list[tuple[int, int]]:
        """
        Order blocks into a motion tree rooted at block 1.

        Repeatedly picks, among chain-adjacent (fixed, unfixed) block pairs,
        the one with the smallest residual displacement and fixes it. Blocks
        with no chain neighbour among the fixed ones are attached by
        displacement alone.

        Returns:
            (reference_block, moving_block) edges in the order they were fixed
        """
        if self.n_blocks < 2:
            return []
        adjacent = self._adjacent_blocks()
        blocks = range(1, self.n_blocks + 1)
        displacement = {
            (b1, b2): self.residual_displacement(b1, b2) for b1 in blocks for b2 in blocks if b1 != b2
        }

        fixed = {1}
        edges = []
        while len(fixed) < self.n_blocks:
            candidates = [(b1, b2) for b1 in fixed for b2 in blocks if b2 not in fixed]
            connected = [edge for edge in candidates if edge in adjacent]
            if not connected:
                logger.debug("No chain-adjacent block left, ranking by displacement only")
                connected = candidates
            best = min(connected, key=lambda edge: (displacement[edge], edge))
            fixed.add(best[1])
            edges.append(best)
            logger.debug("Block %d moves relative to block %d", best[1], best[0])
        return edges
