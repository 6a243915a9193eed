#!/usr/bin/env python3
"""
Profiling script for belka with flamegraph generation.

Usage:
    # Run with py-spy (sampling profiler, low overhead):
    sudo py-spy record -o profile.svg --native -- python scripts/profile_benchmark.py

    # Run with scalene (line-level profiler):
    scalene --html --outfile profile.html scripts/profile_benchmark.py

    # Profile structure pairs named <id>_1.pdb / <id>_2.pdb from a directory:
    python scripts/profile_benchmark.py tests/data
"""
from __future__ import annotations

import math
import sys
import time
from pathlib import Path

import numpy as np

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from belka.analysis.modes import NormalModeCalculator
from belka.core.io import load_molecule
from belka.core.model import Chain
from belka.core.rigid import RigidBlockFinder
from belka.core.sequences import SequenceAligner
from belka.core.structural import apply_transform, axis_angle_matrix, fit_chains

AMINO_ACIDS = "ACDEFGHIKLMNPQRSTVWY"


def synthetic_pair(n_residues: int, n_domains: int, seed: int = 0) -> tuple[Chain, Chain]:
    """Helical chain and a copy whose domains are swung about random hinge axes."""
    rng = np.random.default_rng(seed)
    angles = np.radians(100.0) * np.arange(n_residues)
    coords1 = np.column_stack([2.3 * np.cos(angles), 1.6 * np.sin(angles), 1.5 * np.arange(n_residues)])
    coords2 = coords1.copy()

    domain_size = n_residues // n_domains
    for start in range(domain_size, n_residues, domain_size):
        axis = rng.normal(size=3)
        axis /= np.linalg.norm(axis)
        rotation = axis_angle_matrix(axis, math.radians(rng.uniform(20.0, 60.0)))
        pivot = coords2[start]
        coords2[start:] = (coords2[start:] - pivot) @ rotation.T + pivot

    sequence = "".join(rng.choice(list(AMINO_ACIDS), size=n_residues))
    return (
        Chain.from_coordinates("A", sequence, coords1),
        Chain.from_coordinates("A", sequence, coords2),
    )


def find_structure_pairs(data_dir: Path) -> list[tuple[Path, Path]]:
    """Find <id>_1 / <id>_2 structure pairs for benchmarking."""
    pairs = []
    for first in sorted(data_dir.glob("*_1.pdb")) + sorted(data_dir.glob("*_1.cif")):
        second = first.with_name(first.name.replace("_1.", "_2."))
        if second.exists():
            pairs.append((first, second))
    return pairs


def run_pipeline(chain1: Chain, chain2: Chain) -> dict:
    """Align, superimpose and search rigid blocks, timing each stage."""
    timings = {}

    start = time.perf_counter()
    aligner = SequenceAligner()
    alignment = aligner.align_chains(chain1, chain2)
    aligner.apply_to_chains(alignment, chain1, chain2)
    timings["align"] = time.perf_counter() - start

    start = time.perf_counter()
    fit = fit_chains([chain1], [chain2])
    apply_transform([chain2], fit.transform)
    timings["fit"] = time.perf_counter() - start

    start = time.perf_counter()
    finder = RigidBlockFinder.from_chains([chain1], [chain2])
    n_blocks = finder.find_rigid_blocks()
    timings["blocks"] = time.perf_counter() - start

    return {"rmsd": fit.rmsd, "n_blocks": n_blocks, "timings": timings}


def benchmark_synthetic(sizes: list[int], n_domains: int = 3) -> None:
    """Benchmark the pipeline on synthetic multi-domain chains."""
    for n_residues in sizes:
        chain1, chain2 = synthetic_pair(n_residues, n_domains)
        result = run_pipeline(chain1, chain2)
        timings = result["timings"]
        print(
            f"  {n_residues:5d} residues: {result['n_blocks']} blocks, "
            f"align {timings['align']:.3f}s, fit {timings['fit']:.4f}s, "
            f"blocks {timings['blocks']:.3f}s"
        )


def benchmark_structures(pairs: list[tuple[Path, Path]]) -> dict:
    """Benchmark the pipeline on structure files."""
    results = {"success": 0, "failed": 0, "total_time": 0.0}

    for first, second in pairs:
        start = time.perf_counter()
        molecule1 = load_molecule(first)
        molecule2 = load_molecule(second)
        if not (molecule1 and molecule2 and molecule1.chains and molecule2.chains):
            results["failed"] += 1
            print(f"  Failed to load {first.name}")
            continue
        result = run_pipeline(molecule1.chains[0], molecule2.chains[0])
        results["success"] += 1
        results["total_time"] += time.perf_counter() - start
        print(f"  {first.stem}: RMSD={result['rmsd']:.3f}Å, {result['n_blocks']} blocks")

    return results


def main():
    """Main profiling entry point."""
    print("=" * 60)
    print("belka Profiling Run")
    print("=" * 60)

    print("\n--- Phase 1: Synthetic chains ---")
    benchmark_synthetic([100, 200, 400])

    if len(sys.argv) > 1:
        pairs = find_structure_pairs(Path(sys.argv[1]))
        print(f"\n--- Phase 2: {len(pairs)} structure pairs ---")
        results = benchmark_structures(pairs)
        print(f"Processed {results['success']}/{len(pairs)} pairs in {results['total_time']:.2f}s")

    # Intensive workload (for profiling hot paths)
    print("\n--- Phase 3: Normal modes (5 iterations) ---")
    chain1, _ = synthetic_pair(300, 3)
    calculator = NormalModeCalculator()
    start = time.perf_counter()
    for i in range(5):
        calculator.calculate_modes(chain1, rigid_gamma=10.0)
        print(f"  Iteration {i+1}/5 complete")
    print(f"Total time: {time.perf_counter() - start:.2f}s")

    print("\n" + "=" * 60)
    print("Profiling complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
