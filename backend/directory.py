import logging
from typing import List, Optional

from sqlalchemy.orm import Session

import models
from errors import DuplicateRoleAssignment, InvalidRole, NotFound

logger = logging.getLogger(__name__)


def get_profile(db: Session, user_id: int) -> Optional[models.Profile]:
    return db.query(models.Profile).filter(models.Profile.id == user_id).first()


def require_profile(db: Session, user_id: int) -> models.Profile:
    profile = get_profile(db, user_id)
    if profile is None:
        raise NotFound(f"User {user_id} not found")
    return profile


def resolve_role(db: Session, user_id: int) -> Optional[str]:
    """
    The one place a user's role is looked up. Reads ``user_roles`` only,
    never the profile, so both dashboards share the same answer.
    """
    assignment = db.query(models.UserRole).filter(models.UserRole.user_id == user_id).first()
    return assignment.role if assignment else None


def require_role(db: Session, user_id: int, role: str) -> str:
    actual = resolve_role(db, user_id)
    if actual != role:
        raise InvalidRole(f"User {user_id} is not a {role}")
    return actual


def assign_role(db: Session, user_id: int, role: str) -> models.UserRole:
    if role not in models.ROLES:
        raise InvalidRole(f"Unknown role '{role}'")
    if resolve_role(db, user_id) is not None:
        raise DuplicateRoleAssignment(f"User {user_id} already has a role")
    assignment = models.UserRole(user_id=user_id, role=role)
    db.add(assignment)
    db.flush()
    logger.info("Assigned role %s to user %s", role, user_id)
    return assignment


def list_students(db: Session) -> List[models.Profile]:
    return db.query(models.Profile).join(
        models.UserRole, models.UserRole.user_id == models.Profile.id
    ).filter(
        models.UserRole.role == models.ROLE_STUDENT
    ).order_by(models.Profile.full_name.asc()).all()
