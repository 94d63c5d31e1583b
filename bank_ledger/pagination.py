"""
Pagination helpers shared by the ledger read helpers and the query service
"""

from typing import List, Sequence, TypeVar

from .errors import BusinessRuleViolation

T = TypeVar("T")


def paginate(items: Sequence[T], page: int, size: int, max_page_size: int) -> List[T]:
    """
    Slice one zero-based page out of an ordered sequence

    Raises:
        BusinessRuleViolation: If page is negative or size is not positive
    """
    if page < 0:
        raise BusinessRuleViolation(f"Page index must not be negative: {page}")
    if size <= 0:
        raise BusinessRuleViolation(f"Page size must be positive: {size}")
    size = min(size, max_page_size)
    start = page * size
    return list(items[start:start + size])
