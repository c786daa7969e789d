"""
Pack decomposition algorithm.

Computes, for an order quantity and a set of pack sizes, the multiset of
whole packs that ships the fewest items not below the order and, among
those, the fewest packs.

Modules of interest:
- optimizer: Decomposition result type, the table-based solver, and the
  pack-size validation helpers.
"""

from .optimizer import Decomposition, decompose, validate, pack_sizes_gcd

__all__ = ["Decomposition", "decompose", "validate", "pack_sizes_gcd"]
