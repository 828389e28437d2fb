"""User administration: who may create, promote or deactivate whom."""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tasktrack.models.domain import User
from tasktrack.models.enums import UserRole
from tasktrack.services import permissions
from tasktrack.services.centers import CenterAdmin
from tasktrack.services.errors import ConflictError, RefusalError

logger = logging.getLogger(__name__)


class UserAdmin:

    def __init__(self, db: Session):
        self.db = db

    def list_users(self, actor: User) -> List[User]:
        """Active users. Admins don't see super admins."""
        if not permissions.is_admin(actor.role):
            raise RefusalError("Only admins can list users")
        query = self.db.query(User).filter(User.is_active.is_(True))
        if actor.role == UserRole.ADMIN:
            query = query.filter(User.role.in_([UserRole.ADMIN, UserRole.STAFF]))
        return query.order_by(User.name).all()

    def create_user(
        self,
        actor: User,
        email: str,
        name: Optional[str] = None,
        role: UserRole = UserRole.STAFF
    ) -> User:
        if not permissions.is_admin(actor.role):
            raise RefusalError("Only admins can create users")
        email = (email or "").strip().lower()
        if not email:
            raise ValueError("Email is required")
        if not permissions.can_create_user(actor.role, role):
            raise RefusalError("You cannot create users with that role")

        user = User(email=email, name=(name or "").strip() or None, role=role)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("This email is already registered")
        self.db.refresh(user)

        logger.info("User %s (%s) created by user %s", user.id, role.value, actor.id)
        return user

    def update_user(self, actor: User, target: User, changes: dict) -> User:
        """Change role, active flag, name or center membership of another user."""
        if not permissions.is_admin(actor.role):
            raise RefusalError("Forbidden")
        if target.id == actor.id:
            raise ValueError("You can't modify your own account")
        if not permissions.can_manage_user(actor.role, target.role):
            raise RefusalError("Cannot modify users above your role")
        center_ids = changes.get("center_ids")
        if center_ids is not None and actor.role != UserRole.SUPER_ADMIN:
            raise RefusalError("Only super admins can assign centers")
        centers = CenterAdmin(self.db).resolve(center_ids) if center_ids is not None else None

        updated = False
        new_role = changes.get("role")
        if new_role is not None and new_role != target.role:
            if not permissions.can_create_user(actor.role, new_role):
                raise RefusalError("You cannot assign that role")
            target.role = new_role
            updated = True

        if changes.get("is_active") is not None:
            target.is_active = changes["is_active"]
            updated = True

        if "name" in changes:
            target.name = (changes["name"] or "").strip() or None
            updated = True

        if centers is not None:
            target.centers = centers
            updated = True

        if not updated:
            raise ValueError("No changes")

        target.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(target)
        return target
