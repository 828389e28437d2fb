"""
Which tasks a user may see, and what of them.

Staff see only tasks assigned or delegated to them. Admins see tasks they
created or were given, plus tasks assigned to someone in one of their
centers, minus any task involving a super admin. Super admins see
everything. The worker never sees star ratings on their own task.
"""
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session, aliased

from tasktrack.models.audit import ActivityAction, ActivityLog
from tasktrack.models.domain import Task, User
from tasktrack.models.enums import UserRole
from tasktrack.services import permissions
from tasktrack.services.centers import center_member_ids


def visible_tasks_query(db: Session, user: User) -> Query:
    query = db.query(Task)

    if user.role == UserRole.STAFF:
        return query.filter(or_(Task.assigned_to_id == user.id, Task.delegated_to_id == user.id))

    if user.role == UserRole.ADMIN:
        assignee = aliased(User)
        assigner = aliased(User)
        query = query.outerjoin(assignee, Task.assigned_to_id == assignee.id).outerjoin(
            assigner, Task.assigned_by_id == assigner.id
        )
        return query.filter(or_(
            Task.assigned_to_id == user.id,
            Task.assigned_by_id == user.id,
            and_(
                Task.assigned_to_id.in_(sorted(center_member_ids(user))),
                assignee.role != UserRole.SUPER_ADMIN,
                or_(assigner.id.is_(None), assigner.role != UserRole.SUPER_ADMIN)
            )
        ))

    return query


def can_view_task(user: User, task: Task) -> bool:
    if user.role == UserRole.STAFF:
        return user.id in (task.assigned_to_id, task.delegated_to_id)
    if user.id in (task.assigned_to_id, task.assigned_by_id):
        return True
    if not all(
        involved is None or permissions.can_manage_task(user.role, involved.role)
        for involved in (task.assignee, task.assigner)
    ):
        return False
    if user.role == UserRole.ADMIN:
        return task.assigned_to_id in center_member_ids(user)
    return True


def hides_ratings_from(user: User, task: Task) -> bool:
    return permissions.is_worker(user.id, task.assigned_to_id, task.delegated_to_id)


def visible_activity_details(user: User, task: Task, entry: ActivityLog) -> Optional[dict]:
    """The worker sees that a verification happened, never the rating given."""
    details = entry.details
    if details and entry.action == ActivityAction.VERIFIED and hides_ratings_from(user, task):
        return {key: value for key, value in details.items() if key != "rating"}
    return details
