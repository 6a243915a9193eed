#!/usr/bin/env python3

"""Entry point for belka"""

import logging
import math
from pathlib import Path

from belka.analysis.groups import save_groups
from belka.analysis.modes import NormalModeCalculator
from belka.analysis.motion import DisplacementField, MotionAnalyzer
from belka.cli import arg_parser, setup_logging
from belka.core.io import load_molecule
from belka.core.model import Chain, Molecule
from belka.core.rigid import RigidBlockFinder
from belka.core.sequences import SequenceAligner
from belka.core.structural import apply_transform, fit_chains

logger = logging.getLogger(__name__)


def select_chain(molecule: Molecule, chain_id: str | None) -> Chain | None:
    """Pick a chain by id, or the first chain when no id is given."""
    if chain_id is None:
        return molecule.chains[0] if molecule.chains else None
    return molecule.get_chain(chain_id)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for conformation comparison."""
    args = arg_parser(argv)
    setup_logging(args.verbose)

    print("Loading structures...")
    molecule1 = load_molecule(args.file_path_first)
    molecule2 = load_molecule(args.file_path_second)
    if molecule1 is None or molecule2 is None:
        print("Could not load structures")
        return 1

    chain1 = select_chain(molecule1, args.chain1)
    chain2 = select_chain(molecule2, args.chain2)
    if chain1 is None or chain2 is None:
        print("Requested chains not found")
        return 1

    print(f"Aligning chain {chain1.chain_id} of {molecule1.name} "
          f"with chain {chain2.chain_id} of {molecule2.name}...")
    aligner = SequenceAligner(args.matrix, args.gap_open, args.gap_extend)
    alignment = aligner.align_chains(chain1, chain2)
    if not alignment.is_valid:
        print("Alignment failed")
        return 1
    aligner.apply_to_chains(alignment, chain1, chain2)

    print("\n=== SEQUENCE ALIGNMENT ===")
    print(alignment.summary())
    print(f"Score: {alignment.score}")
    print(alignment.aligned1)
    print(alignment.aligned2)

    fit = fit_chains([chain1], [chain2])
    if not fit.success:
        print("Too few aligned residues for superposition")
        return 1
    apply_transform([chain2], fit.transform)

    print("\n=== SUPERPOSITION ===")
    print(f"RMSD:            {fit.rmsd:.3f} Å over {fit.n_fitted} residues")
    print(f"Rotation angle:  {math.degrees(fit.transform.angle):.2f}°")

    finder = RigidBlockFinder.from_chains([chain1], [chain2])
    n_blocks = finder.find_rigid_blocks(
        args.delta, refine=not args.no_refine, cluster=not args.no_cluster
    )

    print("\n=== RIGID BLOCKS ===")
    print(f"Blocks found: {max(n_blocks, 0)} (delta {args.delta} Å, {finder.elapsed:.2f} s)")
    if n_blocks > 0:
        print(finder.format_report())

    motion = MotionAnalyzer([chain1], [chain2])
    if n_blocks > 1:
        print("\n=== RELATIVE MOTIONS ===")
        for reference, moving in motion.rank_motions():
            screw = motion.relative_motion(reference, moving)
            if screw is None:
                continue
            print(
                f"Block {moving} relative to {reference}: "
                f"{screw.angle_degrees:7.2f}°, "
                f"{screw.translation_parallel:7.3f} Å along axis "
                f"({screw.axis[0]:.3f}, {screw.axis[1]:.3f}, {screw.axis[2]:.3f})"
            )

    output_dir = Path(args.output_dir) if args.output_dir else None
    if output_dir is not None:
        report_path = output_dir / f"{molecule1.name}_{molecule2.name}.rigid"
        finder.save_report(report_path, molecule1.name, molecule2.name)
        save_groups(output_dir / f"{molecule1.name}.grp.gz", [molecule1])
        save_groups(output_dir / f"{molecule2.name}.grp.gz", [molecule2])
        print(f"\nBlock report saved to: {report_path}")

    if args.displacements:
        field = DisplacementField([chain1], [chain2])
        vectors = field.displacements(per_block=True)
        csv_path = (output_dir or Path(".")) / "analysis" / "displacements.csv"
        if len(vectors):
            field.save_to_csv(vectors, csv_path)
            print(f"Displacements saved to: {csv_path}")

    if args.modes:
        calculator = NormalModeCalculator()
        n_modes = calculator.calculate_modes(chain1, rigid_gamma=args.gamma)
        print(f"\nNormal modes computed: {n_modes}")
        if n_modes > 0:
            modes_path = (output_dir or Path(".")) / "analysis" / "modes.csv"
            calculator.modes.save_to_csv(modes_path, n_modes=min(n_modes, 20))
            print(f"Lowest modes saved to: {modes_path}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
