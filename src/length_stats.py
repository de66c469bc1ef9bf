from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

DEFAULT_PERCENTILES = (20, 50, 80)


def nxx(lengths: Iterable[int], total_length: Optional[int] = None) -> List[Optional[int]]:
    """
    Compute N1..N50..N99 in a single pass over the sorted lengths.

    The input does not need to be sorted. If the total length is already known it
    can be passed to skip a second pass. Returns a list of 100 entries indexed by
    percentile; index 0 is unused and every entry is None for empty input.
    """
    table: List[Optional[int]] = [None] * 100
    sorted_lengths = np.sort(np.asarray(list(lengths), dtype=np.int64))
    if sorted_lengths.size == 0:
        return table
    if total_length is None:
        total_length = int(sorted_lengths.sum())

    cum_len = 0
    n = 1
    # Scan from longest to shortest
    for length in sorted_lengths[::-1]:
        length = int(length)
        cum_len += length
        while n < 100 and cum_len >= n * 0.01 * total_length:
            table[n] = length
            n += 1
        if n == 100:
            break
    return table


def validate_percentiles(percentiles: Iterable[int]) -> Tuple[int, ...]:
    percentiles = tuple(percentiles)
    for p in percentiles:
        if not 1 <= p <= 99:
            raise ValueError(f"Percentile {p} out of range [1,99]")
    return percentiles


def nxx_at(lengths: Iterable[int], percentiles: Iterable[int] = DEFAULT_PERCENTILES,
           total_length: Optional[int] = None) -> Dict[int, Optional[int]]:
    percentiles = validate_percentiles(percentiles)
    table = nxx(lengths, total_length)
    return {p: table[p] for p in percentiles}


def median_length(lengths: Iterable[int]) -> Optional[float]:
    """Standard median: middle element, or the mean of the two middle elements."""
    sorted_lengths = np.sort(np.asarray(list(lengths), dtype=np.int64))
    n = sorted_lengths.size
    if n == 0:
        return None
    if n % 2 == 1:
        return float(sorted_lengths[n // 2])
    return (int(sorted_lengths[n // 2 - 1]) + int(sorted_lengths[n // 2])) / 2
