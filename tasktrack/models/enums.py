"""Enums for the task system - these define the valid values for roles, states and slots."""
from enum import Enum


class UserRole(str, Enum):
    """
    The three roles. They form a strict total order:
    super_admin > admin > staff.
    """
    STAFF = "staff"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def level(self) -> int:
        return _ROLE_LEVEL[self]


# Fixed - never recomputed
_ROLE_LEVEL = {
    UserRole.STAFF: 1,
    UserRole.ADMIN: 2,
    UserRole.SUPER_ADMIN: 3,
}


class TaskStatus(str, Enum):
    """The four states a Task can be in. No other states are allowed."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"


class TaskPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class VerifierRole(str, Enum):
    """
    The capacity in which a verification is given.

    ASSIGNED_BY is the original assigner; ASSIGNED_TO is the assignee who
    delegated the work and vouches for it.
    """
    ASSIGNED_BY = "assigned_by"
    ASSIGNED_TO = "assigned_to"

    @property
    def label(self) -> str:
        return "assigner" if self is VerifierRole.ASSIGNED_BY else "delegator"
