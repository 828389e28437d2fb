"""
State machine that enforces the task lifecycle and verification rules.

All task mutations MUST go through here. Each operation asks the permission
rules first and only then touches the task, so a refused request never leaves
a partial change behind.
"""
import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tasktrack.models.audit import ActivityAction, ActivityLog
from tasktrack.models.domain import Comment, Task, User, Verification
from tasktrack.models.enums import TaskPriority, TaskStatus, UserRole
from tasktrack.services import permissions
from tasktrack.services.centers import center_member_ids
from tasktrack.services.errors import (
    InvalidTransitionError,
    RefusalError,
    SlotConflictError,
    VerificationPayloadError,
)

logger = logging.getLogger(__name__)

VERIFICATION_CONTEXT = "verification"


class TaskStateMachine:
    """Enforces state transition invariants and business rules for tasks."""

    def __init__(self, db: Session):
        self.db = db

    # --- Creation / editing ---

    def create_task(
        self,
        actor: User,
        title: str,
        description: Optional[str] = None,
        assignee: Optional[User] = None,
        due_date: Optional[date] = None,
        priority: Optional[TaskPriority] = None
    ) -> Task:
        """Create a task in open state. Admin+ only; the actor becomes assigned_by."""
        if not permissions.is_admin(actor.role):
            self._refuse(actor, None, "Only admins can create tasks")

        title = (title or "").strip()
        if not title:
            raise ValueError("Title is required")

        if assignee is not None:
            self._check_assignee(actor, assignee)

        task = Task(
            title=title,
            description=(description or "").strip() or None,
            status=TaskStatus.OPEN,
            priority=priority or TaskPriority.NORMAL,
            assigned_to_id=assignee.id if assignee else None,
            assigned_by_id=actor.id,
            due_date=due_date
        )
        self.db.add(task)
        self.db.flush()

        self._log(task, actor, ActivityAction.CREATED, {
            "title": task.title,
            "assigned_to": task.assigned_to_id,
            "priority": task.priority.value
        })
        self.db.commit()
        self.db.refresh(task)

        logger.info("Task %s created by user %s", task.id, actor.id)
        return task

    def update_fields(self, task: Task, actor: User, changes: dict) -> Task:
        """
        Edit title, description, assignee, due date or priority.

        Only the creator may edit, within the edit window. Super admins
        bypass the window (and the creator check).
        """
        self._ensure_mutable(task)
        if not permissions.is_admin(actor.role):
            self._refuse(actor, task, "Only admins can edit tasks")
        self._check_task_access(task, actor)
        if actor.role != UserRole.SUPER_ADMIN and not permissions.can_creator_edit(
            actor.id, task.assigned_by_id, task.created_at
        ):
            self._refuse(actor, task, "Tasks can only be edited by their creator within 24 hours")

        details = {}

        if "title" in changes and changes["title"] != task.title:
            title = (changes["title"] or "").strip()
            if not title:
                raise ValueError("Title is required")
            details["title_changed"] = {"from": task.title, "to": title}
            task.title = title

        if "description" in changes and changes["description"] != task.description:
            task.description = (changes["description"] or "").strip() or None
            details["description_changed"] = True

        if "assignee" in changes:
            assignee = changes["assignee"]
            new_id = assignee.id if assignee else None
            if new_id != task.assigned_to_id:
                if assignee is not None:
                    self._check_assignee(actor, assignee)
                details["reassigned"] = {"from": task.assigned_to_id, "to": new_id}
                task.assigned_to_id = new_id

        if "due_date" in changes and changes["due_date"] != task.due_date:
            details["due_date_changed"] = {
                "from": task.due_date.isoformat() if task.due_date else None,
                "to": changes["due_date"].isoformat() if changes["due_date"] else None
            }
            task.due_date = changes["due_date"]

        if "priority" in changes and changes["priority"] and changes["priority"] != task.priority:
            details["priority_changed"] = {"from": task.priority.value, "to": TaskPriority(changes["priority"]).value}
            task.priority = changes["priority"]

        if not details:
            raise ValueError("No changes to apply")

        task.updated_at = datetime.utcnow()
        self._log(task, actor, ActivityAction.UPDATED, details)
        self.db.commit()
        self.db.refresh(task)
        return task

    def delete_task(self, task: Task, actor: User) -> None:
        """Creator only, within the edit window, and never once verified."""
        if task.status == TaskStatus.VERIFIED:
            raise ValueError("Verified tasks cannot be deleted")
        if not permissions.is_admin(actor.role) or not permissions.can_creator_delete(
            actor.id, task.assigned_by_id, task.created_at
        ):
            self._refuse(actor, task, "Tasks can only be deleted by their creator within 24 hours")

        self.db.query(ActivityLog).filter(ActivityLog.task_id == task.id).delete(synchronize_session=False)
        self.db.delete(task)
        self.db.commit()
        logger.info("Task %s deleted by user %s", task.id, actor.id)

    # --- Lifecycle ---

    def change_status(
        self,
        task: Task,
        actor: User,
        new_status: TaskStatus,
        rating=None,
        comment: Optional[str] = None
    ) -> Optional[bool]:
        """
        Move a task to a new status.

        Moving to verified records a verification instead and returns whether
        the task is now fully verified. Any other transition returns None.
        """
        new_status = TaskStatus(new_status)
        self._ensure_mutable(task)

        if not permissions.is_valid_transition(task.status, new_status):
            raise InvalidTransitionError(
                f"Cannot transition from {task.status.value} to {new_status.value}"
            )

        if new_status == TaskStatus.VERIFIED:
            return self.verify(task, actor, rating, comment)

        self._check_task_access(task, actor)

        if not permissions.can_request_status(actor.role, new_status):
            self._refuse(actor, task, "Staff can only mark tasks in progress or complete")

        old_status = task.status
        reopening = old_status == TaskStatus.COMPLETED and new_status == TaskStatus.IN_PROGRESS
        if reopening and not permissions.is_admin(actor.role):
            self._refuse(actor, task, "Only admins can reopen completed tasks")

        now = datetime.utcnow()
        if new_status == TaskStatus.COMPLETED:
            task.completed_at = now
        if reopening:
            # Reopening discards verification progress; it must be redone
            task.completed_at = None
            discarded = len(task.verifications)
            task.verifications.clear()
            if discarded:
                logger.info("Task %s reopened, %d verification(s) discarded", task.id, discarded)

        task.status = new_status
        task.updated_at = now
        self._log(task, actor, ActivityAction.STATUS_CHANGED, {
            "from": old_status.value,
            "to": new_status.value
        })
        self.db.commit()
        self.db.refresh(task)

        logger.info("Task %s moved %s -> %s by user %s", task.id, old_status.value, new_status.value, actor.id)
        return None

    def verify(self, task: Task, actor: User, rating, comment: Optional[str] = None) -> bool:
        """
        Fill one verification slot on a completed task.

        The payload is validated before anyone's permissions are looked at.
        When the last required slot is filled the task becomes verified with
        the rounded mean rating; otherwise it stays completed.
        """
        self._ensure_mutable(task)
        if task.status != TaskStatus.COMPLETED:
            raise InvalidTransitionError(
                f"Cannot transition from {task.status.value} to {TaskStatus.VERIFIED.value}"
            )

        problem = permissions.verification_payload_error(rating, comment)
        if problem:
            raise VerificationPayloadError(problem)

        if not permissions.can_verify_tasks(actor.role):
            self._refuse(actor, task, "Only admins can verify tasks")
        self._check_task_access(task, actor)

        requirements = permissions.get_verification_requirements(
            actor.role,
            actor.id,
            task.assigned_by_id,
            task.assigned_to_id,
            task.delegated_to_id,
            [v.verifier_role for v in task.verifications]
        )
        if not requirements.can_verify:
            self._refuse(actor, task, "You are not a pending verifier for this task")

        verification_comment = None
        if comment and comment.strip():
            verification_comment = Comment(
                task_id=task.id,
                author_id=actor.id,
                body=comment.strip(),
                context=VERIFICATION_CONTEXT
            )
            self.db.add(verification_comment)

        verification = Verification(
            verifier_id=actor.id,
            verifier_role=requirements.available_slot,
            rating=rating,
            comment=verification_comment
        )
        task.verifications.append(verification)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                "Slot %s on task %s was filled concurrently", requirements.available_slot.value, task.id
            )
            raise SlotConflictError("This verification slot has already been filled")

        fully_verified = permissions.is_fully_verified(
            task.delegated_to_id,
            task.assigned_by_id,
            task.assigned_to_id,
            [v.verifier_role for v in task.verifications]
        )

        now = datetime.utcnow()
        if fully_verified:
            task.status = TaskStatus.VERIFIED
            task.verified_at = now
            task.verified_by_id = actor.id
            task.verification_rating = permissions.average_rating(v.rating for v in task.verifications)
        task.updated_at = now

        self._log(task, actor, ActivityAction.VERIFIED, {
            "slot": requirements.available_slot.value,
            "rating": rating,
            "fully_verified": fully_verified
        })
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise SlotConflictError("This verification slot has already been filled")
        self.db.refresh(task)

        logger.info(
            "Task %s: %s slot verified by user %s (fully verified: %s)",
            task.id, requirements.available_slot.value, actor.id, fully_verified
        )
        return fully_verified

    # --- Delegation ---

    def delegate(self, task: Task, actor: User, delegate: Optional[User]) -> Task:
        """Hand execution to a staff member, or take it back when delegate is None."""
        self._ensure_mutable(task)
        if not permissions.can_delegate(actor.role, actor.id, task.assigned_to_id):
            self._refuse(actor, task, "You can only delegate tasks assigned to you")
        self._check_task_access(task, actor)

        if delegate is None:
            if task.delegated_to_id is None:
                raise ValueError("Task is not delegated")
            details = {"from": task.delegated_to_id}
            task.delegated_to_id = None
            action = ActivityAction.UNDELEGATED
        else:
            if not delegate.is_active:
                raise ValueError("Invalid delegate")
            if not permissions.can_delegate_to(delegate.role):
                raise ValueError("Tasks can only be delegated to staff")
            if delegate.id == task.delegated_to_id:
                raise ValueError("Task is already delegated to this user")
            details = {"to": delegate.id, "to_name": delegate.name}
            task.delegated_to_id = delegate.id
            action = ActivityAction.DELEGATED

        task.updated_at = datetime.utcnow()
        self._log(task, actor, action, details)
        self.db.commit()
        self.db.refresh(task)

        logger.info("Task %s %s by user %s", task.id, action, actor.id)
        return task

    # --- Comments ---

    def add_comment(self, task: Task, actor: User, body: str) -> Comment:
        self._ensure_mutable(task)
        self._check_task_access(task, actor)
        body = (body or "").strip()
        if not body:
            raise ValueError("Comment body is required")

        comment = Comment(task_id=task.id, author_id=actor.id, body=body)
        self.db.add(comment)
        self._log(task, actor, ActivityAction.COMMENTED, {"preview": body[:100]})
        self.db.commit()
        self.db.refresh(comment)
        return comment

    # --- Guards ---

    def _ensure_mutable(self, task: Task) -> None:
        if task.status == TaskStatus.VERIFIED:
            raise ValueError("Verified tasks cannot be modified")

    def _check_task_access(self, task: Task, actor: User) -> None:
        """
        Staff act only on their own work. Admins act on tasks they created or
        were given, and otherwise on tasks assigned within their centers that
        involve no super admin.
        """
        if actor.role == UserRole.STAFF:
            if actor.id not in (task.assigned_to_id, task.delegated_to_id):
                self._refuse(actor, task, "Forbidden")
            return
        if actor.id in (task.assigned_to_id, task.assigned_by_id):
            return
        for involved in (task.assignee, task.assigner):
            if involved is not None and not permissions.can_manage_task(actor.role, involved.role):
                self._refuse(actor, task, "Admins cannot modify super-admin tasks")
        if actor.role == UserRole.ADMIN and task.assigned_to_id not in center_member_ids(actor):
            self._refuse(actor, task, "Forbidden")

    def _check_assignee(self, actor: User, assignee: User) -> None:
        if not assignee.is_active:
            raise ValueError("Invalid assignee")
        if not permissions.can_assign_to(actor.role, assignee.role):
            self._refuse(actor, None, "You cannot assign tasks to users above your role")

    def _refuse(self, actor: User, task: Optional[Task], message: str) -> None:
        logger.info(
            "Refused user %s on task %s: %s",
            actor.id, task.id if task is not None else "-", message
        )
        raise RefusalError(message)

    def _log(self, task: Task, actor: User, action: str, details: Optional[dict] = None) -> None:
        self.db.add(ActivityLog(task_id=task.id, user_id=actor.id, action=action, details=details))
