"""Domain models - users and their centers, tasks, and the verifications and comments that hang off tasks."""
from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from tasktrack.database import Base
from tasktrack.models.enums import TaskPriority, TaskStatus, UserRole, VerifierRole


# Membership link; a user may belong to any number of centers
user_centers = Table(
    "user_centers",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("center_id", Integer, ForeignKey("centers.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime, nullable=False, default=datetime.utcnow)
)


class User(Base):
    """A person who can create, execute or verify tasks."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True, index=True)  # Stored lower-cased
    name = Column(String, nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.STAFF)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    centers = relationship("Center", secondary=user_centers, back_populates="members", order_by="Center.name")


class Center(Base):
    """
    A site or team. Admins oversee tasks of the users who share a center
    with them; super admins see everything regardless.
    """
    __tablename__ = "centers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("User", secondary=user_centers, back_populates="centers")


class Task(Base):
    """
    A task progresses through states: open → in_progress → completed → verified.

    Invariants enforced in the service layer:
    - delegated_to, when set, is a staff user
    - Once verified, nothing on the task changes again
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.OPEN)
    priority = Column(SQLEnum(TaskPriority), nullable=False, default=TaskPriority.NORMAL)

    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    assigned_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # The creator
    delegated_to_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    due_date = Column(Date, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    verified_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_rating = Column(Integer, nullable=True)  # Rounded mean of all ratings

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    assignee = relationship("User", foreign_keys=[assigned_to_id])
    assigner = relationship("User", foreign_keys=[assigned_by_id])
    delegate = relationship("User", foreign_keys=[delegated_to_id])
    verifications = relationship(
        "Verification",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Verification.created_at"
    )
    comments = relationship(
        "Comment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Comment.created_at"
    )


class Verification(Base):
    """
    One filled verification slot.

    Invariants:
    - At most one row per (task_id, verifier_role); the unique constraint is
      what settles two verifiers racing for the same slot
    - rating is 1-5
    - Deleted en masse when a completed task is reopened
    """
    __tablename__ = "verifications"
    __table_args__ = (
        UniqueConstraint("task_id", "verifier_role", name="uq_verification_task_slot"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    verifier_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    verifier_role = Column(SQLEnum(VerifierRole), nullable=False)
    rating = Column(Integer, nullable=False)
    comment_id = Column(Integer, ForeignKey("comments.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    task = relationship("Task", back_populates="verifications")
    verifier = relationship("User")
    comment = relationship("Comment")

    @property
    def verifier_name(self):
        return self.verifier.name if self.verifier else None


class Comment(Base):
    """A comment on a task. Verification justifications are comments too."""
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    body = Column(String, nullable=False)
    context = Column(String, nullable=True)  # "verification" or None

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    task = relationship("Task", back_populates="comments")
    author = relationship("User")

    @property
    def author_name(self):
        return self.author.name if self.author else None
