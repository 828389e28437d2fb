"""
Centers group users by site. An admin oversees the tasks of everyone who
shares a center with them; an admin in no center oversees only the tasks
they created or were given.
"""
import logging
from typing import Iterable, List, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tasktrack.models.domain import Center, User
from tasktrack.models.enums import UserRole
from tasktrack.services.errors import ConflictError, RefusalError

logger = logging.getLogger(__name__)


def center_member_ids(user: User) -> Set[int]:
    """Ids of every user sharing at least one center with this user, the user included."""
    return {member.id for center in user.centers for member in center.members}


class CenterAdmin:

    def __init__(self, db: Session):
        self.db = db

    def list_centers(self) -> List[Center]:
        return self.db.query(Center).filter(Center.is_active.is_(True)).order_by(Center.name).all()

    def create_center(self, actor: User, name: str) -> Center:
        if actor.role != UserRole.SUPER_ADMIN:
            raise RefusalError("Only super admins can create centers")
        name = (name or "").strip()
        if not name:
            raise ValueError("Center name is required")

        center = Center(name=name)
        self.db.add(center)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("A center with this name already exists")
        self.db.refresh(center)

        logger.info("Center %s (%s) created by user %s", center.id, center.name, actor.id)
        return center

    def resolve(self, center_ids: Iterable[int]) -> List[Center]:
        """Load centers by id; every id must exist."""
        wanted = set(center_ids)
        if not wanted:
            return []
        centers = self.db.query(Center).filter(Center.id.in_(wanted)).order_by(Center.name).all()
        if len(centers) != len(wanted):
            raise ValueError("Unknown center")
        return centers
