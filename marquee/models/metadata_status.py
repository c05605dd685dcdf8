"""Lifecycle status of a media record's descriptive metadata."""

from enum import Enum


class MetadataStatus(Enum):
    """Represents where a media record is in the matching lifecycle."""

    PENDING = "pending"
    MATCHED = "matched"
    MANUAL = "manual"
    ERROR = "error"

    def allows_auto_resolve(self) -> bool:
        """Check if automatic resolution may still change this record."""
        return self in {MetadataStatus.PENDING, MetadataStatus.ERROR}

    def needs_user_action(self) -> bool:
        """Check if this state belongs in the pending-review queue."""
        return self in {MetadataStatus.PENDING, MetadataStatus.ERROR}
