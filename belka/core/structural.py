"""
Rigid-body superposition of corresponding point sets

Closed-form least-squares fit (Kabsch): the optimal rotation is rebuilt from
the eigenvectors of R·Rᵗ, where R is the cross-covariance of the two point
sets, and the eigenvalues come from the analytic solution of the
characteristic cubic. RMSD follows from the same eigenvalues without
re-projecting the points.
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from belka.core.model import Chain

logger = logging.getLogger(__name__)

EPSILON = 1e-20
# Roots closer than this fraction of the largest root count as equal
ROOT_SEPARATION = 1e-5
# Basis vectors shorter than this fraction of the largest singular value
DEGENERATE_NORM = 1e-6


@dataclass
class Transform:
    """
    Rigid transformation x' = R·(x - c) + t + c.

    Attributes:
        rotation: 3x3 rotation matrix R
        translation: Translation t in the centered frame
        center: Origin c the rotation is applied about
        axis: Unit rotation axis
        angle: Signed rotation angle about axis (radians)
    """

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))
    axis: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angle: float = 0.0

    @classmethod
    def from_matrix(
        cls,
        rotation: np.ndarray,
        translation: np.ndarray,
        center: np.ndarray | None = None,
    ) -> "Transform":
        """Build a transform and derive its axis and angle."""
        rotation = np.asarray(rotation, dtype=float)
        axis = rotation_axis(rotation)
        return cls(
            rotation=rotation,
            translation=np.asarray(translation, dtype=float),
            center=np.zeros(3) if center is None else np.asarray(center, dtype=float),
            axis=axis,
            angle=rotation_angle(rotation, axis),
        )

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform one point (3,) or an array of points (N, 3)."""
        points = np.asarray(points, dtype=float)
        return (points - self.center) @ self.rotation.T + self.translation + self.center

    def inverse(self) -> "Transform":
        rotation = self.rotation.T
        return Transform.from_matrix(rotation, -rotation @ self.translation, self.center)

    def relative_to(self, reference: "Transform") -> "Transform":
        """
        Express this transform in the frame of a reference transform.

        Both transforms must share the same center.

        Returns:
            self ∘ reference⁻¹
        """
        if not np.allclose(self.center, reference.center):
            raise ValueError("Transforms must share the same center")
        rotation = self.rotation @ reference.rotation.T
        translation = self.translation - rotation @ reference.translation
        return Transform.from_matrix(rotation, translation, self.center)


@dataclass
class FitResult:
    """Outcome of one superposition; rmsd is -1 when no fit was performed."""

    transform: Transform
    rmsd: float
    n_fitted: int

    @property
    def success(self) -> bool:
        return self.rmsd >= 0


def rotation_axis(rotation: np.ndarray) -> np.ndarray:
    """
    Unit axis of a rotation matrix.

    Taken as the eigenvector whose eigenvalue is closest to 1 and oriented so
    that its largest component is positive. Matrices with elements outside
    [-1, 1] are not rotations and yield a zero axis.
    """
    if np.any(np.abs(rotation) > 1.0 + 1e-9):
        return np.zeros(3)
    eigenvalues, eigenvectors = np.linalg.eig(rotation)
    index = int(np.argmin(np.abs(eigenvalues - 1.0)))
    axis = np.real(eigenvectors[:, index])
    norm = np.linalg.norm(axis)
    if norm == 0:
        return np.zeros(3)
    axis = axis / norm
    if axis[np.argmax(np.abs(axis))] < 0:
        axis = -axis
    return axis


def rotation_angle(rotation: np.ndarray, axis: np.ndarray) -> float:
    """Signed rotation angle (radians) about a given axis."""
    if not np.any(axis):
        return 0.0
    antisymmetric = np.array(
        [
            rotation[2, 1] - rotation[1, 2],
            rotation[0, 2] - rotation[2, 0],
            rotation[1, 0] - rotation[0, 1],
        ]
    )
    sine = 0.5 * float(np.dot(axis, antisymmetric))
    cosine = 0.5 * (float(np.trace(rotation)) - 1.0)
    return math.atan2(sine, cosine)


def axis_angle_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotation matrix for a rotation by angle (radians) about a unit axis."""
    x, y, z = axis
    c, s = math.cos(angle), math.sin(angle)
    t = 1.0 - c
    return np.array(
        [
            [t * x * x + c, t * x * y - s * z, t * x * z + s * y],
            [t * x * y + s * z, t * y * y + c, t * y * z - s * x],
            [t * x * z - s * y, t * y * z + s * x, t * z * z + c],
        ]
    )


def _solve_cubic(det: float, spur: float, cof: float) -> tuple[int, list[float]]:
    """
    Eigenvalues of R·Rᵗ in descending order.

    Returns:
        (case, roots) where case is 1 for three distinct roots, 2 when the two
        smaller roots coincide, 3 when the two larger roots coincide and 4
        when all three are equal
    """
    det *= det
    d = spur * spur
    h = d - cof
    g = spur * (1.5 * cof - d) - det * 0.5

    if h > d * EPSILON:
        sqrth = math.sqrt(abs(h))
        d = -g / (h * sqrth)
        if d > 1.0 - EPSILON:
            return 2, [spur + 2.0 * sqrth, spur - sqrth, spur - sqrth]
        if d < -1.0 + EPSILON:
            return 3, [spur + sqrth, spur + sqrth, max(0.0, spur - 2.0 * sqrth)]
        d = math.acos(d) / 3.0
        cth = sqrth * math.cos(d)
        sth = sqrth * math.sqrt(3.0) * math.sin(d)
        return 1, [spur + 2.0 * cth, spur - cth + sth, max(0.0, spur - cth - sth)]
    return 4, [spur, spur, spur]


def _root_case(roots: list[float]) -> int:
    """Classify descending roots, treating near-coincident ones as equal."""
    tolerance = ROOT_SEPARATION * roots[0]
    upper_equal = roots[0] - roots[1] <= tolerance
    lower_equal = roots[1] - roots[2] <= tolerance
    if upper_equal and lower_equal:
        return 4
    if upper_equal:
        return 3
    if lower_equal:
        return 2
    return 1


def _eigenvectors(case: int, roots: list[float], rr: list[float]) -> np.ndarray:
    """Orthonormal eigenvector columns of R·Rᵗ, packed as rr[0..5]."""
    a = np.zeros((3, 3))

    if case == 4:
        return np.eye(3)

    if case == 1:
        for col in range(2):
            d = roots[col]
            ss = [
                (d - rr[2]) * (d - rr[5]) - rr[4] * rr[4],
                (d - rr[5]) * rr[1] + rr[3] * rr[4],
                (d - rr[0]) * (d - rr[5]) - rr[3] * rr[3],
                (d - rr[2]) * rr[3] + rr[1] * rr[4],
                (d - rr[0]) * rr[4] + rr[1] * rr[3],
                (d - rr[0]) * (d - rr[2]) - rr[1] * rr[1],
            ]
            # Pick the adjugate column with the largest diagonal element
            if abs(ss[0]) >= abs(ss[2]):
                if abs(ss[0]) >= abs(ss[5]):
                    vector = (ss[0], ss[1], ss[3])
                else:
                    vector = (ss[3], ss[4], ss[5])
            elif abs(ss[2]) >= abs(ss[5]):
                vector = (ss[1], ss[2], ss[4])
            else:
                vector = (ss[3], ss[4], ss[5])
            a[:, col] = vector
            norm = np.linalg.norm(a[:, col])
            if norm > 0:
                a[:, col] /= norm
        a[:, 2] = np.cross(a[:, 0], a[:, 1])
        return a

    # Two equal roots: column m holds the eigenvector of the distinct root
    if case == 2:
        m, m1, m2, m3 = 0, 2, 0, 1
    else:
        m, m1, m2, m3 = 2, 0, 1, 2
    # roots[1] always belongs to the repeated pair
    h = roots[1]
    shifted = np.array(
        [
            [rr[0] - h, rr[1], rr[3]],
            [rr[1], rr[2] - h, rr[4]],
            [rr[3], rr[4], rr[5] - h],
        ]
    )
    # R·Rᵗ - hI has rank one, so each of its columns is parallel to the distinct eigenvector
    a[:, m] = shifted[:, int(np.argmax(np.abs(np.diag(shifted))))]
    # Any vector normal to it lies in the degenerate plane
    a[:, 1] = np.cross(a[:, m], np.eye(3)[int(np.argmin(np.abs(a[:, m])))])

    for col in (m, 1):
        norm = np.linalg.norm(a[:, col])
        if norm > 0:
            a[:, col] /= norm
    a[:, m1] = np.cross(a[:, m2], a[:, m3])
    return a


def superimpose(
    target: Sequence | np.ndarray,
    mobile: Sequence | np.ndarray,
    center: np.ndarray | None = None,
) -> FitResult:
    """
    Least-squares superposition of mobile points onto target points.

    Point pairs where either side is None (or not finite) are skipped.

    Args:
        target: Reference points, sequence of (3,) arrays or None
        mobile: Points to move, co-indexed with target
        center: Origin for the rotation; defaults to the coordinate origin

    Returns:
        FitResult whose transform maps mobile onto target, rmsd -1 when
        fewer than 3 usable pairs exist
    """
    if len(target) != len(mobile):
        logger.warning("Point sets differ in length (%d vs %d)", len(target), len(mobile))
        return FitResult(Transform(), -1.0, 0)

    origin = np.zeros(3) if center is None else np.asarray(center, dtype=float)
    usable = [
        (p1, p2)
        for p1, p2 in zip(target, mobile)
        if p1 is not None
        and p2 is not None
        and np.all(np.isfinite(p1))
        and np.all(np.isfinite(p2))
    ]
    n = len(usable)
    if n < 3:
        logger.warning("Only %d usable point pairs, at least 3 are needed for a fit", n)
        return FitResult(Transform(center=origin), -1.0, n)

    y = np.array([p1 for p1, _ in usable], dtype=float) - origin
    x = np.array([p2 for _, p2 in usable], dtype=float) - origin

    sx, sy = x.sum(axis=0), y.sum(axis=0)
    sx2, sy2 = float(np.sum(x * x)), float(np.sum(y * y))
    sxy = x.T @ y
    inv_n = 1.0 / n

    energy = (sx2 - sx @ sx * inv_n + sy2 - sy @ sy * inv_n) * inv_n
    r = (sxy - np.outer(sx, sy) * inv_n) * inv_n
    rr_full = r @ r.T
    rr = [
        rr_full[0, 0],
        rr_full[0, 1],
        rr_full[1, 1],
        rr_full[0, 2],
        rr_full[1, 2],
        rr_full[2, 2],
    ]
    det = float(np.linalg.det(r))
    spur = (rr[0] + rr[2] + rr[5]) / 3.0
    cof = (
        rr[2] * rr[5] - rr[4] * rr[4]
        + rr[0] * rr[5] - rr[3] * rr[3]
        + rr[0] * rr[2] - rr[1] * rr[1]
    ) / 3.0

    _, roots = _solve_cubic(det, spur, cof)
    a = _eigenvectors(_root_case(roots), roots, rr)

    b = np.zeros((3, 3))
    degenerate = False
    min_norm = DEGENERATE_NORM * math.sqrt(max(roots[0], 0.0))
    for col in range(2):
        b[:, col] = r.T @ a[:, col]
        norm = np.linalg.norm(b[:, col])
        if norm <= min_norm:
            degenerate = True
            break
        b[:, col] /= norm

    if degenerate:
        logger.warning("Degenerate point configuration, falling back to identity rotation")
        transform = Transform(center=origin)
    else:
        b[:, 2] = np.cross(b[:, 0], b[:, 1])
        rotation = b @ a.T
        translation = (sy - rotation @ sx) * inv_n
        transform = Transform.from_matrix(rotation, translation, origin)

    d = math.sqrt(abs(roots[2]))
    if det < 0:
        d = -d
    d += math.sqrt(abs(roots[1])) + math.sqrt(abs(roots[0]))
    rmsd = math.sqrt(abs(energy - 2.0 * d))
    logger.debug("Fitted %d points, rmsd %.4f", n, rmsd)
    return FitResult(transform, rmsd, n)


def fit_chains(
    target_chains: Sequence[Chain],
    mobile_chains: Sequence[Chain],
    selected_only: bool = False,
    center: np.ndarray | None = None,
) -> FitResult:
    """
    Superimpose co-indexed chains using their representative atoms.

    Args:
        target_chains: Chains of the reference conformation
        mobile_chains: Chains to be moved, co-indexed with target_chains
        selected_only: Only use residue pairs selected on both sides
        center: Origin for the rotation

    Returns:
        FitResult mapping mobile_chains onto target_chains
    """
    if len(target_chains) != len(mobile_chains):
        raise ValueError(
            f"Chain lists differ in length: {len(target_chains)} vs {len(mobile_chains)}"
        )
    target_points = []
    mobile_points = []
    for chain1, chain2 in zip(target_chains, mobile_chains):
        for residue1, residue2 in zip(chain1, chain2):
            if residue1.is_gap or residue2.is_gap:
                continue
            if selected_only and not (residue1.selected and residue2.selected):
                continue
            target_points.append(residue1.coords)
            mobile_points.append(residue2.coords)
    return superimpose(target_points, mobile_points, center)


def apply_transform(chains: Sequence[Chain], transform: Transform) -> None:
    """Move the representative atoms of chains in place."""
    for chain in chains:
        for residue in chain:
            if residue.has_coords:
                residue.coords = transform.apply(residue.coords)
