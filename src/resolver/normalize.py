"""Result normalization."""
from typing import Iterable, List, Tuple


def normalize(collations: Iterable[int]) -> List[int]:
    """Sort ascending and drop duplicates in a single pass over the sorted list."""
    result: List[int] = []
    for oid in sorted(collations):
        if not result or result[-1] != oid:
            result.append(oid)
    return result


def to_rows(collations: Iterable[int]) -> List[Tuple[int]]:
    """Single-column rows, one per collation."""
    return [(oid,) for oid in collations]
