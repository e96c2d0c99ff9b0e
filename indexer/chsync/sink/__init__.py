"""
Ingestion sink: batch accumulation and bulk writes to the analytics store.

Invariants:
    - Records are grouped per destination table
    - A batch generation is written with one concurrent insert per table
    - Write failures propagate to whoever awaits the flush
"""

from .accumulator import BatchAccumulator
from .writer import AnalyticsWriter, BatchWriteError, WriteResult

__all__ = [
    "BatchAccumulator",
    "AnalyticsWriter",
    "BatchWriteError",
    "WriteResult",
]
