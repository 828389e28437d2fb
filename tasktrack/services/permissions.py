"""
Permission and verification rules.

Every function here is a pure predicate or selector over its arguments: no
database access, no side effects, and no exceptions for unauthorized input.
Anything ambiguous resolves to "denied". The state machine service consults
these rules strictly before it mutates anything.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from tasktrack.models.enums import TaskStatus, UserRole, VerifierRole

EDIT_WINDOW = timedelta(hours=24)

MIN_RATING = 1
MAX_RATING = 5
# Ratings at or below this need a written comment
COMMENT_REQUIRED_AT_OR_BELOW = 3


# --- Role hierarchy ---

def role_level(role: UserRole) -> int:
    return UserRole(role).level


def is_admin(role: UserRole) -> bool:
    return role in (UserRole.ADMIN, UserRole.SUPER_ADMIN)


def can_verify_tasks(role: UserRole) -> bool:
    return is_admin(role)


# --- Assignment / delegation ---

def can_assign_to(assigner_role: UserRole, target_role: UserRole) -> bool:
    """Work only goes to peers or subordinates."""
    if assigner_role == UserRole.STAFF:
        return False
    return role_level(assigner_role) >= role_level(target_role)


def can_create_user(creator_role: UserRole, new_user_role: UserRole) -> bool:
    if creator_role == UserRole.STAFF:
        return False
    return role_level(creator_role) >= role_level(new_user_role)


def can_view_reports_for(viewer_role: UserRole, target_role: UserRole) -> bool:
    if viewer_role == UserRole.STAFF:
        return False
    return role_level(viewer_role) >= role_level(target_role)


def can_manage_user(actor_role: UserRole, target_role: UserRole) -> bool:
    """
    Can this user edit or deactivate a user of the target role?

    Admins can manage admins and staff, never super admins. Note the
    same-role branch: an admin may manage another admin.
    """
    if actor_role == UserRole.STAFF:
        return False
    return role_level(actor_role) > role_level(target_role) or actor_role == target_role


def can_manage_task(actor_role: UserRole, involved_role: Optional[UserRole]) -> bool:
    """Admins can't touch tasks assigned to or by super admins."""
    if actor_role == UserRole.SUPER_ADMIN:
        return True
    if actor_role == UserRole.STAFF:
        return False
    return involved_role != UserRole.SUPER_ADMIN


def can_delegate(actor_role: UserRole, actor_id, task_assigned_to) -> bool:
    """
    Staff can't delegate. Super admins always can. Admins only delegate tasks
    assigned directly to themselves, not tasks they created for someone else.
    """
    if actor_role == UserRole.STAFF:
        return False
    if actor_role == UserRole.SUPER_ADMIN:
        return True
    return task_assigned_to is not None and actor_id == task_assigned_to


def can_delegate_to(target_role: UserRole) -> bool:
    """Only staff can be delegated to."""
    return target_role == UserRole.STAFF


# --- Lifecycle ---

VALID_TRANSITIONS: Dict[TaskStatus, Tuple[TaskStatus, ...]] = {
    TaskStatus.OPEN: (TaskStatus.IN_PROGRESS,),
    TaskStatus.IN_PROGRESS: (TaskStatus.COMPLETED, TaskStatus.OPEN),
    TaskStatus.COMPLETED: (TaskStatus.VERIFIED, TaskStatus.IN_PROGRESS),
    TaskStatus.VERIFIED: (),
}

STAFF_TARGET_STATUSES = (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)


def is_valid_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in VALID_TRANSITIONS[TaskStatus(current)]


def can_request_status(role: UserRole, target: TaskStatus) -> bool:
    """Role gating on top of the transition table."""
    if target == TaskStatus.VERIFIED:
        return can_verify_tasks(role)
    if role == UserRole.STAFF:
        return target in STAFF_TARGET_STATUSES
    return is_admin(role)


# --- Verification slots ---

@dataclass(frozen=True)
class VerificationSlot:
    role: VerifierRole
    user_id: object
    filled: bool = False

    @property
    def label(self) -> str:
        return self.role.label


@dataclass(frozen=True)
class VerificationRequirements:
    slots: List[VerificationSlot] = field(default_factory=list)
    can_verify: bool = False
    available_slot: Optional[VerifierRole] = None


def required_slots(assigned_by, assigned_to, delegated_to) -> List[Tuple[VerifierRole, object]]:
    """
    The (slot, designated verifier) pairs a task needs, assigner first.

    The assigner always verifies. A delegated task also needs the assignee,
    who vouches for the delegated work - unless the assignee is the assigner.
    """
    slots = []
    if assigned_by is not None:
        slots.append((VerifierRole.ASSIGNED_BY, assigned_by))
    if delegated_to is not None and assigned_to is not None and assigned_to != assigned_by:
        slots.append((VerifierRole.ASSIGNED_TO, assigned_to))
    return slots


_SLOT_TAGS = {r.value for r in VerifierRole}


def _filled_set(filled_slot_roles: Iterable) -> set:
    # Unknown tags fill nothing
    tags = {getattr(r, "value", r) for r in filled_slot_roles}
    return {VerifierRole(t) for t in tags if t in _SLOT_TAGS}


def get_verification_requirements(
    user_role: UserRole,
    user_id,
    assigned_by,
    assigned_to,
    delegated_to,
    filled_slot_roles: Iterable,
) -> VerificationRequirements:
    """Which slots a task needs, and which one (if any) this user may fill now."""
    filled = _filled_set(filled_slot_roles)
    slots = [
        VerificationSlot(role=role, user_id=verifier_id, filled=role in filled)
        for role, verifier_id in required_slots(assigned_by, assigned_to, delegated_to)
    ]

    if user_role == UserRole.SUPER_ADMIN:
        # Override authority: any unfilled slot will do
        candidates = [s for s in slots if not s.filled]
    elif user_role == UserRole.ADMIN:
        candidates = [s for s in slots if not s.filled and s.user_id == user_id]
    else:
        candidates = []

    if not candidates:
        return VerificationRequirements(slots=slots)
    return VerificationRequirements(slots=slots, can_verify=True, available_slot=candidates[0].role)


def is_fully_verified(delegated_to, assigned_by, assigned_to, filled_slot_roles: Iterable) -> bool:
    """True iff every slot that required_slots derives for the task is filled."""
    filled = _filled_set(filled_slot_roles)
    return all(role in filled for role, _ in required_slots(assigned_by, assigned_to, delegated_to))


def average_rating(ratings: Iterable[int]) -> Optional[int]:
    """Arithmetic mean, rounded half-up: (4 + 5) / 2 -> 5."""
    ratings = list(ratings)
    if not ratings:
        return None
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def verification_payload_error(rating, comment: Optional[str]) -> Optional[str]:
    """Return why a verification payload is unacceptable, or None if it is fine."""
    if rating is None:
        return "A star rating is required to verify a task"
    if isinstance(rating, bool) or not isinstance(rating, int):
        return "Rating must be a whole number of stars"
    if not MIN_RATING <= rating <= MAX_RATING:
        return f"Rating must be between {MIN_RATING} and {MAX_RATING}"
    if rating <= COMMENT_REQUIRED_AT_OR_BELOW and not (comment or "").strip():
        return f"A comment is required for ratings of {COMMENT_REQUIRED_AT_OR_BELOW} stars or below"
    return None


def is_worker(user_id, assigned_to, delegated_to) -> bool:
    """The person who actually did the work: the delegate, else the assignee."""
    if delegated_to is not None:
        return delegated_to == user_id
    return assigned_to is not None and assigned_to == user_id


# --- Edit / delete window ---

def is_within_edit_window(created_at: datetime, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return now - created_at < EDIT_WINDOW


def can_creator_edit(user_id, assigned_by, created_at: datetime, now: Optional[datetime] = None) -> bool:
    if assigned_by is None or user_id != assigned_by:
        return False
    return is_within_edit_window(created_at, now)


def can_creator_delete(user_id, assigned_by, created_at: datetime, now: Optional[datetime] = None) -> bool:
    # Same rule as editing
    return can_creator_edit(user_id, assigned_by, created_at, now)
