"""Dashboard counts, the recent-activity timeline and per-user reports."""
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from tasktrack.models.audit import ActivityAction, ActivityLog
from tasktrack.models.domain import Task, User
from tasktrack.models.enums import TaskStatus
from tasktrack.services import permissions
from tasktrack.services.errors import RefusalError
from tasktrack.services.visibility import visible_tasks_query

ACTIVE_STATUSES = (TaskStatus.OPEN, TaskStatus.IN_PROGRESS)

# Lifecycle events only; verifications (and their ratings) never appear here
TIMELINE_ACTIONS = (
    ActivityAction.CREATED,
    ActivityAction.STATUS_CHANGED,
    ActivityAction.DELEGATED,
    ActivityAction.UNDELEGATED,
)
TIMELINE_LENGTH = 10


def dashboard_summary(db: Session, user: User, today: Optional[date] = None) -> Dict[str, int]:
    """
    Counts over the tasks this user can see.

    pending_verification counts completed tasks where the user could fill a
    verification slot right now; it is always 0 for staff.
    """
    today = today or date.today()
    tasks = visible_tasks_query(db, user).all()

    summary = {
        "open": 0,
        "in_progress": 0,
        "overdue": 0,
        "completed": 0,
        "verified": 0,
        "pending_verification": 0,
    }
    for task in tasks:
        summary[task.status.value] += 1
        if task.status in ACTIVE_STATUSES and task.due_date is not None and task.due_date < today:
            summary["overdue"] += 1
        if task.status == TaskStatus.COMPLETED and permissions.can_verify_tasks(user.role):
            requirements = permissions.get_verification_requirements(
                user.role,
                user.id,
                task.assigned_by_id,
                task.assigned_to_id,
                task.delegated_to_id,
                [v.verifier_role for v in task.verifications]
            )
            if requirements.can_verify:
                summary["pending_verification"] += 1
    return summary


def activity_timeline(db: Session, user: User, limit: int = TIMELINE_LENGTH) -> List[dict]:
    """Recent lifecycle events across every task this user can see, newest first."""
    task_ids = [task_id for (task_id,) in visible_tasks_query(db, user).with_entities(Task.id).all()]
    if not task_ids:
        return []

    entries = db.query(ActivityLog).filter(
        ActivityLog.task_id.in_(task_ids),
        ActivityLog.action.in_(TIMELINE_ACTIONS)
    ).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()

    timeline = []
    for entry in entries:
        task = entry.task
        details = entry.details or {}
        status_change = entry.action == ActivityAction.STATUS_CHANGED
        timeline.append({
            "id": entry.id,
            "task_id": task.id,
            "task_title": task.title,
            "actor_name": entry.user_name,
            "action": entry.action,
            "from_status": details.get("from") if status_change else None,
            "to_status": details.get("to") if status_change else None,
            "assigned_to_id": task.assigned_to_id,
            "assigned_to_name": task.assignee.name if task.assignee else None,
            "due_date": task.due_date,
            "delegated_to_name": details.get("to_name"),
            "created_at": entry.created_at,
        })
    return timeline

def user_reports(db: Session, viewer: User) -> List[dict]:
    """Task counts and average rating per user the viewer may report on."""
    if not permissions.is_admin(viewer.role):
        raise RefusalError("Only admins can view reports")

    users = db.query(User).filter(User.is_active.is_(True)).order_by(User.name).all()
    reports = []
    for user in users:
        if not permissions.can_view_reports_for(viewer.role, user.role):
            continue
        # The worker is the delegate when there is one, else the assignee
        worked = db.query(Task).filter(
            (Task.delegated_to_id == user.id)
            | ((Task.assigned_to_id == user.id) & Task.delegated_to_id.is_(None))
        ).all()
        ratings = [t.verification_rating for t in worked if t.verification_rating is not None]
        reports.append({
            "user_id": user.id,
            "name": user.name,
            "role": user.role,
            "total": len(worked),
            "completed": sum(1 for t in worked if t.status in (TaskStatus.COMPLETED, TaskStatus.VERIFIED)),
            "verified": sum(1 for t in worked if t.status == TaskStatus.VERIFIED),
            "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
        })
    return reports
