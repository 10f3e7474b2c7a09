"""Brief history and reuse."""

from callprep.cache.history import (
    BriefHistory,
    BriefRecord,
    BriefStatus,
    InMemoryBriefHistory,
    SQLiteBriefHistory,
)
from callprep.cache.recency import find_reusable_brief

__all__ = [
    "BriefHistory",
    "BriefRecord",
    "BriefStatus",
    "InMemoryBriefHistory",
    "SQLiteBriefHistory",
    "find_reusable_brief",
]
