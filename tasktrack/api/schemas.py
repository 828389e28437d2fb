"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Any, List, Optional
from pydantic import BaseModel, Field
from tasktrack.models.enums import TaskPriority, TaskStatus, UserRole, VerifierRole


# Center schemas
class CenterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class CenterResponse(BaseModel):
    id: int
    name: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# User schemas
class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    name: Optional[str] = Field(None, max_length=200)
    role: UserRole = UserRole.STAFF


class UserUpdate(BaseModel):
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    name: Optional[str] = Field(None, max_length=200)
    center_ids: Optional[List[int]] = None  # Replaces the user's memberships; super admins only


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str]
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime
    centers: List[CenterResponse] = []

    class Config:
        from_attributes = True


# Task schemas
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None
    priority: Optional[TaskPriority] = None


class TaskUpdate(BaseModel):
    """
    One kind of change per request: a status change (with a rating and
    optional comment when verifying), a delegation change, or field edits.
    Only fields actually sent are applied.
    """
    status: Optional[TaskStatus] = None
    # Checked by the verification rules, so 2.5 or "4" get a proper message
    verification_rating: Optional[Any] = None
    verification_comment: Optional[str] = None

    delegated_to: Optional[int] = None

    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[date] = None
    priority: Optional[TaskPriority] = None


class VerificationResponse(BaseModel):
    id: int
    verifier_id: int
    verifier_name: Optional[str]
    verifier_role: VerifierRole
    rating: Optional[int]  # Hidden from the worker
    comment_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class VerificationSlotResponse(BaseModel):
    role: VerifierRole
    user_id: Optional[int]
    label: str
    filled: bool


class VerificationRequirementsResponse(BaseModel):
    slots: List[VerificationSlotResponse]
    can_verify: bool
    available_slot: Optional[VerifierRole]


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    assigned_to_id: Optional[int]
    assigned_by_id: Optional[int]
    delegated_to_id: Optional[int]
    due_date: Optional[date]
    completed_at: Optional[datetime]
    verified_by_id: Optional[int]
    verified_at: Optional[datetime]
    verification_rating: Optional[int]  # Hidden from the worker
    created_at: datetime
    updated_at: datetime
    verifications: List[VerificationResponse] = []

    class Config:
        from_attributes = True


class TaskDetailResponse(TaskResponse):
    verification_requirements: Optional[VerificationRequirementsResponse] = None
    # Set only when this request recorded a verification
    fully_verified: Optional[bool] = Field(None, alias="_fullyVerified")

    class Config:
        from_attributes = True
        populate_by_name = True


# Comment schemas
class CommentCreate(BaseModel):
    body: str = Field(..., max_length=5000)


class CommentResponse(BaseModel):
    id: int
    task_id: int
    author_id: int
    author_name: Optional[str]
    body: str
    context: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# Activity schemas
class ActivityResponse(BaseModel):
    id: int
    task_id: int
    user_id: int
    user_name: Optional[str]
    action: str
    details: Optional[dict]
    created_at: datetime

    class Config:
        from_attributes = True


# Dashboard / reports
class TimelineItem(BaseModel):
    id: int
    task_id: int
    task_title: str
    actor_name: Optional[str]
    action: str
    from_status: Optional[TaskStatus]
    to_status: Optional[TaskStatus]
    assigned_to_id: Optional[int]
    assigned_to_name: Optional[str]
    due_date: Optional[date]
    delegated_to_name: Optional[str]
    created_at: datetime


class DashboardResponse(BaseModel):
    open: int
    in_progress: int
    overdue: int
    completed: int
    verified: int
    pending_verification: int
    timeline: List[TimelineItem] = []


class UserReport(BaseModel):
    user_id: int
    name: Optional[str]
    role: UserRole
    total: int
    completed: int
    verified: int
    average_rating: Optional[float]


# Error response
class ErrorResponse(BaseModel):
    """Response when an action is refused or invalid."""
    detail: str
