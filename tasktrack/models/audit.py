"""
Task activity log.

Append-only record of what happened to a task and who did it. Rendered as the
task's activity feed, so unlike the task itself it is user-facing.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from tasktrack.database import Base


class ActivityLog(Base):
    """
    One activity entry.

    Invariants:
    - Once written, never edited
    - Removed only together with its task
    """
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False, index=True)  # e.g., "status_changed"
    details = Column(JSON, nullable=True)  # Minimal contextual data
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    user = relationship("User")
    task = relationship("Task", viewonly=True)

    @property
    def user_name(self):
        return self.user.name if self.user else None


class ActivityAction:
    """Enumeration of activity actions."""
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"

    # Delegation
    DELEGATED = "delegated"
    UNDELEGATED = "undelegated"

    VERIFIED = "verified"
    COMMENTED = "commented"
