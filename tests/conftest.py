"""Pytest configuration and shared fixtures."""
import os

# Keep the app module from creating a database file when tests import it
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from tasktrack.database import Base
from tasktrack.models.domain import Center, Task, User, Verification, Comment  # noqa: F401
from tasktrack.models.audit import ActivityLog  # noqa: F401
from tasktrack.models.enums import TaskStatus, UserRole


@pytest.fixture
def session_factory():
    """A fresh in-memory database per test, shared by every session opened on it."""
    # StaticPool: one connection, so the API client sees what fixtures commit
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


def _user(db_session, email, name, role, is_active=True):
    user = User(email=email, name=name, role=role, is_active=is_active)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def super_admin(db_session):
    return _user(db_session, "rahul@example.com", "Rahul", UserRole.SUPER_ADMIN)


@pytest.fixture
def admin(db_session):
    return _user(db_session, "priya@example.com", "Priya", UserRole.ADMIN)


@pytest.fixture
def other_admin(db_session):
    return _user(db_session, "meera@example.com", "Meera", UserRole.ADMIN)


@pytest.fixture
def staff(db_session):
    return _user(db_session, "amit@example.com", "Amit", UserRole.STAFF)


@pytest.fixture
def other_staff(db_session):
    return _user(db_session, "sana@example.com", "Sana", UserRole.STAFF)


@pytest.fixture
def inactive_staff(db_session):
    return _user(db_session, "gone@example.com", "Gone", UserRole.STAFF, is_active=False)


@pytest.fixture
def make_task(db_session):
    """Insert a task directly, bypassing the state machine."""
    def _make(assigned_by, assigned_to=None, delegated_to=None, status=TaskStatus.OPEN, title="Prepare lab report"):
        task = Task(
            title=title,
            status=status,
            assigned_by_id=assigned_by.id if assigned_by else None,
            assigned_to_id=assigned_to.id if assigned_to else None,
            delegated_to_id=delegated_to.id if delegated_to else None
        )
        db_session.add(task)
        db_session.commit()
        db_session.refresh(task)
        return task
    return _make


@pytest.fixture
def join_center(db_session):
    """Add users to a center by name, creating the center on first use."""
    def _join(name, *users):
        center = db_session.query(Center).filter(Center.name == name).first()
        if center is None:
            center = Center(name=name)
            db_session.add(center)
        center.members.extend(users)
        db_session.commit()
        return center
    return _join
