"""Comparison of two conformations of a biomolecular chain: alignment, superposition, rigid blocks and motions."""
