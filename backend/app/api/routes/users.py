import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, ensure_visible, get_db, require_admin_like
from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.models.role import Role
from app.models.user import User, UserRoleAssignment, UserStatus
from app.schemas.user import UserOut, UserRoleAssign, UserStatusUpdate
from app.services import relationship_facts
from app.services.audit import log_activity
from app.services.authorization import can_modify_role

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_user(db: Session, actor: Actor, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise ResourceNotFoundError("User", user_id)
    ensure_visible(actor, user.establishment_id, "User", user_id)
    return user


def _get_role(db: Session, actor: Actor, role_id: int) -> Role:
    role = db.get(Role, role_id)
    if role is None:
        raise ResourceNotFoundError("Role", role_id)
    ensure_visible(actor, role.establishment_id, "Role", role_id)
    return role


def _out(db: Session, user: User) -> UserOut:
    return UserOut.from_user(user, relationship_facts.user_role_names(db, user.id))


@router.get("/", response_model=list[UserOut])
def list_users(
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> list[UserOut]:
    query = select(User).order_by(User.name)
    if not actor.is_superadmin:
        query = query.where(User.establishment_id == actor.establishment_id)
    return [_out(db, user) for user in db.execute(query).scalars()]


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> UserOut:
    return _out(db, _get_user(db, actor, user_id))


@router.post("/{user_id}/roles", response_model=UserOut)
def attach_role(
    user_id: int,
    payload: UserRoleAssign,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> UserOut:
    user = _get_user(db, actor, user_id)
    role = _get_role(db, actor, payload.role_id)
    # Granting a role follows the same protection as editing it.
    if not can_modify_role(role.name, actor.roles):
        raise PermissionDeniedError("Protected role cannot be assigned", code="protected_role")
    if user.establishment_id is not None and role.establishment_id not in (None, user.establishment_id):
        raise BusinessRuleError("Role belongs to a different establishment")

    existing = db.execute(
        select(UserRoleAssignment).where(
            UserRoleAssignment.user_id == user.id,
            UserRoleAssignment.role_id == role.id,
        )
    ).scalar_one_or_none()
    if existing is None:
        db.add(UserRoleAssignment(user_id=user.id, role_id=role.id, establishment_id=role.establishment_id))
        log_activity(
            db,
            user=actor,
            action="user.role.attach",
            entity_type="user",
            entity_id=user.id,
            details={"role": role.name},
        )
        db.commit()
        logger.info("Role attached: user=%s role=%s by=%s", user.id, role.name, actor.id)
    return _out(db, user)


@router.delete("/{user_id}/roles/{role_id}", response_model=UserOut)
def detach_role(
    user_id: int,
    role_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> UserOut:
    user = _get_user(db, actor, user_id)
    role = _get_role(db, actor, role_id)
    if not can_modify_role(role.name, actor.roles):
        raise PermissionDeniedError("Protected role cannot be removed", code="protected_role")
    assignment = db.execute(
        select(UserRoleAssignment).where(
            UserRoleAssignment.user_id == user.id,
            UserRoleAssignment.role_id == role.id,
        )
    ).scalar_one_or_none()
    if assignment is None:
        raise ResourceNotFoundError("User role", role_id)
    db.delete(assignment)
    log_activity(
        db,
        user=actor,
        action="user.role.detach",
        entity_type="user",
        entity_id=user.id,
        details={"role": role.name},
    )
    db.commit()
    logger.info("Role detached: user=%s role=%s by=%s", user.id, role.name, actor.id)
    return _out(db, user)


@router.patch("/{user_id}/status", response_model=UserOut)
def update_status(
    user_id: int,
    payload: UserStatusUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> UserOut:
    user = _get_user(db, actor, user_id)
    if user.id == actor.id and payload.status != UserStatus.active:
        raise BusinessRuleError("You cannot deactivate your own account")
    if user.status != payload.status:
        log_activity(
            db,
            user=actor,
            action="user.status",
            entity_type="user",
            entity_id=user.id,
            details={"from": user.status.value, "to": payload.status.value},
        )
        user.status = payload.status
        db.commit()
        db.refresh(user)
    return _out(db, user)
