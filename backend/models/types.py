"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
different ID types (e.g., passing a SearchID where a UserID is expected).

Uses TypeAlias for complex types that are purely structural.
"""

from typing import Any, NewType, TypeAlias

# ID types using NewType for type safety
UserID = NewType("UserID", str)
SearchID = NewType("SearchID", str)
ListingID = NewType("ListingID", str)
QueueItemID = NewType("QueueItemID", str)

# Structural aliases using TypeAlias
Coordinate: TypeAlias = tuple[float, float]  # (lat, lng)
ListingSnapshot: TypeAlias = dict[str, Any]  # JSON-ready listing payload
ChangeSet: TypeAlias = dict[str, Any]  # field name -> {"old": ..., "new": ...}
DateString: TypeAlias = str  # YYYY-MM-DD in market timezone
