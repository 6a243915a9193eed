"""CLI scripts called from __main__.py"""

import argparse
import logging
import os
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from belka.core.rigid import DEFAULT_MAX_DELTA
from belka.core.sequences import (
    AVAILABLE_MATRICES,
    DEFAULT_GAP_EXTEND,
    DEFAULT_GAP_OPEN,
    DEFAULT_MATRIX,
)


def setup_logging(verbose: int = 0) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: Verbosity level (0=WARNING, 1=INFO, 2=DEBUG)
    """
    if verbose == 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:  # verbose >= 2
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("belka").setLevel(level)


def validate_file_path(input_path: str) -> Path:
    """Validate file_path and readability"""
    file_path = Path(input_path)
    checks = [
        (lambda: file_path.exists(), "Path does not exist"),
        (lambda: file_path.is_file(), "Not a valid file"),
        (lambda: os.access(file_path, os.R_OK), "No read permission"),
        (lambda: file_path.stat().st_size > 0, "File is empty"),
    ]
    for condition, error_message in checks:
        if not condition():
            raise ValueError(f"File Validation Error: {error_message}")
    return file_path


def get_version() -> str:
    """Get version from package metadata"""
    try:
        return version("belka")
    except PackageNotFoundError:
        return "0.0.1"  # Fallback for development


def build_parser() -> argparse.ArgumentParser:
    """Assemble command-line argument processing"""
    parser = argparse.ArgumentParser(
        prog="belka",
        description="Align two conformations, superimpose them and find rigid blocks",
    )

    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=get_version(),
        help="View belka version number",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (-v for INFO, -vv for DEBUG/trace)",
    )

    # File arguments
    parser.add_argument(
        "file_path_first",
        type=validate_file_path,
        help="Path to the first (reference) structure file",
    )
    parser.add_argument(
        "file_path_second",
        type=validate_file_path,
        help="Path to the second structure file, moved onto the first",
    )
    parser.add_argument("-c1", "--chain1", type=str, help="Chain of the first structure (default: first)")
    parser.add_argument("-c2", "--chain2", type=str, help="Chain of the second structure (default: first)")

    # Alignment options
    parser.add_argument(
        "--matrix",
        choices=AVAILABLE_MATRICES,
        default=DEFAULT_MATRIX,
        help=f"Substitution matrix (default: {DEFAULT_MATRIX})",
    )
    parser.add_argument(
        "--gap-open",
        type=int,
        default=DEFAULT_GAP_OPEN,
        help=f"Gap opening penalty, not positive (default: {DEFAULT_GAP_OPEN})",
    )
    parser.add_argument(
        "--gap-extend",
        type=int,
        default=DEFAULT_GAP_EXTEND,
        help=f"Gap extension penalty, not positive (default: {DEFAULT_GAP_EXTEND})",
    )

    # Rigid block options
    parser.add_argument(
        "-d",
        "--delta",
        type=float,
        default=DEFAULT_MAX_DELTA,
        help=f"Maximal interresidue distance deviation in Å (default: {DEFAULT_MAX_DELTA})",
    )
    parser.add_argument("--no-refine", action="store_true", help="Skip block refinement")
    parser.add_argument("--no-cluster", action="store_true", help="Skip fragment clustering")

    # Output options
    parser.add_argument(
        "-o",
        "--output-dir",
        type=str,
        help="Directory for report, group, displacement and mode files",
    )
    parser.add_argument(
        "--displacements",
        action="store_true",
        help="Write per-residue displacement vectors to CSV",
    )
    parser.add_argument(
        "--modes",
        action="store_true",
        help="Compute elastic network normal modes of the first structure",
    )
    parser.add_argument(
        "--gamma",
        type=float,
        default=1.0,
        help="Spring multiplier inside rigid blocks for normal modes (default: 1.0)",
    )
    return parser


def arg_parser(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse the command line arguments"""
    return build_parser().parse_args(argv)
