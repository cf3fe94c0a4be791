"""
Batcher.

Splits an ordered review sequence into bounded, contiguous work units.
"""

from typing import List, Sequence

from src.models.review import Review


def create_batches(reviews: Sequence[Review], batch_size: int) -> List[List[Review]]:
    """
    Split reviews into contiguous batches of batch_size.

    The last batch holds the remainder. Empty input yields no batches.

    Raises:
        ValueError: If batch_size is less than 1
    """
    if batch_size < 1:
        raise ValueError(f"Invalid batch size: {batch_size}. Must be >= 1")

    return [
        list(reviews[start:start + batch_size])
        for start in range(0, len(reviews), batch_size)
    ]
