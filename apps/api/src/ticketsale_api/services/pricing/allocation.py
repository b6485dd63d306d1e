"""Integer-exact proportional allocation of a discount across basket lines."""

from __future__ import annotations

from typing import Sequence


def allocate_proportional_minor(total_minor: int, weights_minor: Sequence[int]) -> list[int]:
    """Split ``total_minor`` across ``weights_minor`` with no rounding leakage.

    Each line first receives ``floor(total * weight / sum(weights))``. The units
    lost to flooring are then handed out one at a time to lines in input order,
    skipping zero-weight lines, so earlier lines absorb the remainder. While the
    total fits within the weights no line is allocated more than its weight.

    A zero weight sum yields all zeros whatever the requested total. Otherwise
    the result always sums to ``total_minor``.

    Raises:
        ValueError: on a negative total or weight.
    """

    if total_minor < 0:
        raise ValueError("Allocation total must be non-negative")
    if any(weight < 0 for weight in weights_minor):
        raise ValueError("Allocation weights must be non-negative")

    allocations = [0] * len(weights_minor)
    weight_total = sum(weights_minor)
    if weight_total == 0 or total_minor == 0:
        return allocations
    capped = total_minor <= weight_total

    for index, weight in enumerate(weights_minor):
        allocations[index] = (total_minor * weight) // weight_total

    # Fewer units remain than there are positive-weight lines, so one pass suffices.
    remainder = total_minor - sum(allocations)
    for index, weight in enumerate(weights_minor):
        if remainder <= 0:
            break
        if weight <= 0 or (capped and allocations[index] >= weight):
            continue
        allocations[index] += 1
        remainder -= 1

    return allocations
