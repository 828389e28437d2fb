"""API routes for centers, users, tasks, verification and delegation."""
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from tasktrack.database import get_db
from tasktrack.models.audit import ActivityLog
from tasktrack.models.domain import Comment, Task, User
from tasktrack.models.enums import TaskPriority, TaskStatus
from tasktrack.services import permissions
from tasktrack.services.errors import ConflictError, RefusalError
from tasktrack.services.centers import CenterAdmin
from tasktrack.services.reporting import activity_timeline, dashboard_summary, user_reports
from tasktrack.services.state_machine import TaskStateMachine
from tasktrack.services.user_admin import UserAdmin
from tasktrack.services.visibility import (
    can_view_task,
    hides_ratings_from,
    visible_activity_details,
    visible_tasks_query,
)
from tasktrack.api.schemas import (
    ActivityResponse,
    CenterCreate,
    CenterResponse,
    CommentCreate,
    CommentResponse,
    DashboardResponse,
    ErrorResponse,
    TaskCreate,
    TaskDetailResponse,
    TaskResponse,
    TaskUpdate,
    UserCreate,
    UserReport,
    UserResponse,
    UserUpdate,
    VerificationRequirementsResponse,
    VerificationSlotResponse,
)

router = APIRouter()

REFUSAL_RESPONSES = {
    403: {"model": ErrorResponse, "description": "Refusal - not allowed for this user"},
    400: {"model": ErrorResponse, "description": "Invalid transition or payload"},
}

FIELD_KEYS = {"title", "description", "assigned_to", "due_date", "priority"}
STATUS_KEYS = {"status", "verification_rating", "verification_comment"}


def get_current_user(
    x_user_id: Optional[int] = Header(None),
    db: Session = Depends(get_db)
) -> User:
    """Identity comes from the X-User-Id header; the session layer in front of us sets it."""
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    user = db.query(User).filter(User.id == x_user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, RefusalError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _get_task(db: Session, task_id: int, user: User) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if not can_view_task(user, task):
        raise HTTPException(status_code=403, detail="Forbidden")
    return task


def _get_user_or_400(db: Session, user_id: Optional[int], message: str) -> Optional[User]:
    if user_id is None:
        return None
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=400, detail=message)
    return user


def _task_response(task: Task, viewer: User, detail: bool = False, fully_verified: Optional[bool] = None):
    """Serialize a task for this viewer. The worker never sees star ratings."""
    schema = TaskDetailResponse if detail else TaskResponse
    response = schema.model_validate(task)

    if hides_ratings_from(viewer, task):
        response.verification_rating = None
        for verification in response.verifications:
            verification.rating = None

    if detail:
        response.fully_verified = fully_verified
        if task.status in (TaskStatus.COMPLETED, TaskStatus.VERIFIED):
            requirements = permissions.get_verification_requirements(
                viewer.role,
                viewer.id,
                task.assigned_by_id,
                task.assigned_to_id,
                task.delegated_to_id,
                [v.verifier_role for v in task.verifications]
            )
            response.verification_requirements = VerificationRequirementsResponse(
                slots=[
                    VerificationSlotResponse(role=s.role, user_id=s.user_id, label=s.label, filled=s.filled)
                    for s in requirements.slots
                ],
                can_verify=requirements.can_verify,
                available_slot=requirements.available_slot
            )
    return response


# Center endpoints
@router.get("/centers", response_model=List[CenterResponse])
def list_centers(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """List active centers."""
    return CenterAdmin(db).list_centers()


@router.post(
    "/centers",
    response_model=CenterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**REFUSAL_RESPONSES, 409: {"model": ErrorResponse, "description": "Name already taken"}}
)
def create_center(center_data: CenterCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Create a center. Super admins only."""
    try:
        return CenterAdmin(db).create_center(user, center_data.name)
    except (RefusalError, ConflictError, ValueError) as e:
        raise _http_error(e)


# User endpoints
@router.get("/users", response_model=List[UserResponse], responses=REFUSAL_RESPONSES)
def list_users(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """List active users. Admins don't see super admins."""
    try:
        return UserAdmin(db).list_users(user)
    except RefusalError as e:
        raise _http_error(e)


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED, responses=REFUSAL_RESPONSES)
def create_user(user_data: UserCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Create a user at or below the creator's own role."""
    try:
        return UserAdmin(db).create_user(user, user_data.email, user_data.name, user_data.role)
    except (RefusalError, ConflictError, ValueError) as e:
        raise _http_error(e)


@router.patch("/users/{user_id}", response_model=UserResponse, responses=REFUSAL_RESPONSES)
def update_user(
    user_id: int,
    user_data: UserUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Change another user's role, active flag, name or centers."""
    target = db.query(User).filter(User.id == user_id).first()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        return UserAdmin(db).update_user(user, target, user_data.model_dump(exclude_unset=True))
    except (RefusalError, ValueError) as e:
        raise _http_error(e)


# Task endpoints
@router.get("/tasks", response_model=List[TaskResponse])
def list_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = None,
    assignee: Optional[int] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """List the tasks this user can see, newest first."""
    query = visible_tasks_query(db, user)
    if status_filter:
        query = query.filter(Task.status == status_filter)
    if priority:
        query = query.filter(Task.priority == priority)
    if assignee:
        query = query.filter(Task.assigned_to_id == assignee)
    tasks = query.order_by(Task.created_at.desc(), Task.id.desc()).all()
    return [_task_response(t, user) for t in tasks]


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED, responses=REFUSAL_RESPONSES)
def create_task(task_data: TaskCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Create a task in open state. Admin+ only."""
    assignee = _get_user_or_400(db, task_data.assigned_to, "Invalid assignee")
    sm = TaskStateMachine(db)
    try:
        task = sm.create_task(
            user,
            title=task_data.title,
            description=task_data.description,
            assignee=assignee,
            due_date=task_data.due_date,
            priority=task_data.priority
        )
    except (RefusalError, ValueError) as e:
        raise _http_error(e)
    return _task_response(task, user)


@router.get("/tasks/{task_id}", response_model=TaskDetailResponse)
def get_task(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Get a task with its verifications and this user's verification options."""
    task = _get_task(db, task_id, user)
    return _task_response(task, user, detail=True)


@router.patch("/tasks/{task_id}", response_model=TaskDetailResponse, responses={
    **REFUSAL_RESPONSES,
    409: {"model": ErrorResponse, "description": "Verification slot already filled"}
})
def update_task(
    task_id: int,
    update: TaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """
    Change a task's status, delegation or fields.

    Moving to verified records one verification. The response carries
    _fullyVerified: false while other verifiers are still pending.
    """
    task = _get_task(db, task_id, user)
    data = update.model_dump(exclude_unset=True)

    kinds = [bool(STATUS_KEYS & data.keys()), "delegated_to" in data, bool(FIELD_KEYS & data.keys())]
    if sum(kinds) == 0:
        raise HTTPException(status_code=400, detail="No changes to apply")
    if sum(kinds) > 1:
        raise HTTPException(
            status_code=400,
            detail="Change status, delegation and task fields in separate requests"
        )

    sm = TaskStateMachine(db)
    fully_verified = None
    try:
        if "delegated_to" in data:
            delegate = _get_user_or_400(db, data["delegated_to"], "Invalid delegate")
            sm.delegate(task, user, delegate)
        elif "status" in data:
            if data["status"] is None or data["status"] == task.status:
                raise ValueError("No changes to apply")
            fully_verified = sm.change_status(
                task,
                user,
                data["status"],
                rating=data.get("verification_rating"),
                comment=data.get("verification_comment")
            )
        elif STATUS_KEYS & data.keys():
            raise ValueError("A status is required alongside a verification rating")
        else:
            changes = {k: v for k, v in data.items() if k != "assigned_to"}
            if "assigned_to" in data:
                changes["assignee"] = _get_user_or_400(db, data["assigned_to"], "Invalid assignee")
            sm.update_fields(task, user, changes)
    except (RefusalError, ConflictError, ValueError) as e:
        raise _http_error(e)

    task = db.query(Task).filter(Task.id == task_id).first()
    return _task_response(task, user, detail=True, fully_verified=fully_verified)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT, responses=REFUSAL_RESPONSES)
def delete_task(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Delete a task. Creator only, within 24 hours of creating it, never once verified."""
    task = _get_task(db, task_id, user)
    try:
        TaskStateMachine(db).delete_task(task, user)
    except (RefusalError, ValueError) as e:
        raise _http_error(e)


# Comment endpoints
@router.get("/tasks/{task_id}/comments", response_model=List[CommentResponse])
def list_comments(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """List comments on a task, oldest first."""
    _get_task(db, task_id, user)
    return db.query(Comment).filter(Comment.task_id == task_id).order_by(Comment.created_at, Comment.id).all()


@router.post(
    "/tasks/{task_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSAL_RESPONSES
)
def add_comment(
    task_id: int,
    comment_data: CommentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    """Add a comment. Refused once the task is verified."""
    task = _get_task(db, task_id, user)
    try:
        return TaskStateMachine(db).add_comment(task, user, comment_data.body)
    except (RefusalError, ValueError) as e:
        raise _http_error(e)


# Activity endpoints
@router.get("/tasks/{task_id}/activity", response_model=List[ActivityResponse])
def list_activity(task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Activity on a task, newest first. The worker's copy carries no ratings."""
    task = _get_task(db, task_id, user)
    entries = db.query(ActivityLog).filter(
        ActivityLog.task_id == task_id
    ).order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).all()

    activity = []
    for entry in entries:
        response = ActivityResponse.model_validate(entry)
        response.details = visible_activity_details(user, task, entry)
        activity.append(response)
    return activity


# Dashboard / reports
@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Task counts for this user, how many completed tasks await their verification, and recent activity."""
    return {**dashboard_summary(db, user), "timeline": activity_timeline(db, user)}


@router.get("/reports", response_model=List[UserReport], responses=REFUSAL_RESPONSES)
def get_reports(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Per-user task counts and average ratings, for users at or below the viewer's role."""
    try:
        return user_reports(db, user)
    except RefusalError as e:
        raise _http_error(e)
