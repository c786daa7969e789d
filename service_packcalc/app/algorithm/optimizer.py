"""
Optimal pack decomposition for Pack Calculator Service.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Any, Iterable, List

# Sentinel cost for totals no combination of packs reaches
UNREACHABLE = -1


@dataclass(frozen=True)
class Decomposition:
    """Packs chosen for an order: pack size -> count, plus derived totals.

    The empty decomposition (no packs, all totals zero) is the defined
    answer for degenerate requests and for infeasible size sets.
    """
    pack_counts: Dict[int, int] = field(default_factory=dict)
    total_items: int = 0
    total_packs: int = 0
    waste: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.pack_counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pack_counts": {str(size): count for size, count in self.pack_counts.items()},
            "total_items": self.total_items,
            "total_packs": self.total_packs,
            "waste": self.waste,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Decomposition":
        if not isinstance(data, dict) or not isinstance(data.get("pack_counts", {}), dict):
            raise ValueError("Malformed decomposition")
        return cls(
            pack_counts={int(size): int(count) for size, count in data.get("pack_counts", {}).items()},
            total_items=int(data.get("total_items", 0)),
            total_packs=int(data.get("total_packs", 0)),
            waste=int(data.get("waste", 0)),
        )


def validate(pack_sizes: Iterable[int]) -> bool:
    """Check that a pack size set is usable: non-empty, every member > 0."""
    sizes = list(pack_sizes)
    if not sizes:
        return False
    return all(size > 0 for size in sizes)


def pack_sizes_gcd(pack_sizes: Iterable[int]) -> int:
    """Greatest common divisor of the pack sizes (0 for an empty set).

    Orders that are not a multiple of this value can never be met exactly.
    """
    result = 0
    for size in pack_sizes:
        result = math.gcd(result, size)
    return result


def decompose(order_quantity: int, pack_sizes: Iterable[int]) -> Decomposition:
    """Find the optimal whole-pack decomposition of an order.

    Rules, in priority order:
      1. Only whole packs are shipped.
      2. Ship as few items as possible, but never fewer than ordered.
      3. Among those, ship as few packs as possible.

    ``min_packs[n]`` holds the fewest packs summing to exactly ``n`` items
    and ``best_size[n]`` the pack size that achieved it, for every ``n`` up
    to ``order_quantity + max(pack_sizes)``; an optimal total always lies
    below that bound. Sizes are tried in ascending order and only a strictly
    better count replaces the current one, so among equally short chains
    the smaller size is preferred.

    Time and space are O((order_quantity + max size) * distinct sizes).
    Degenerate input (order <= 0, empty set, non-positive size) yields the
    empty decomposition.
    """
    sizes = sorted(set(pack_sizes))
    if order_quantity <= 0 or not validate(sizes):
        return Decomposition()

    limit = order_quantity + sizes[-1]

    min_packs: List[int] = [UNREACHABLE] * (limit + 1)
    best_size: List[int] = [0] * (limit + 1)
    min_packs[0] = 0

    for n in range(1, limit + 1):
        best = UNREACHABLE
        chosen = 0
        for size in sizes:
            if size > n:
                break
            previous = min_packs[n - size]
            if previous == UNREACHABLE:
                continue
            if best == UNREACHABLE or previous + 1 < best:
                best = previous + 1
                chosen = size
        min_packs[n] = best
        best_size[n] = chosen

    # The first reachable total at or above the order is the minimum
    # feasible total; its table entry already holds the fewest packs.
    total_items = next(
        (n for n in range(order_quantity, limit + 1) if min_packs[n] != UNREACHABLE),
        None
    )
    if total_items is None:
        return Decomposition()

    pack_counts: Dict[int, int] = {}
    remainder = total_items
    while remainder > 0:
        size = best_size[remainder]
        pack_counts[size] = pack_counts.get(size, 0) + 1
        remainder -= size

    return Decomposition(
        pack_counts=pack_counts,
        total_items=total_items,
        total_packs=min_packs[total_items],
        waste=total_items - order_quantity,
    )
