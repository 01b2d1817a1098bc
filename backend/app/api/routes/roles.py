import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import Actor, ensure_visible, get_db, require_admin_like, require_capability, scoped_establishment_id
from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.models.role import Permission, Role, RolePermission
from app.models.user import User, UserRoleAssignment
from app.schemas.role import PermissionOut, RoleCreate, RoleOut, RolePermissionAssign, RoleUpdate
from app.schemas.user import UserOut
from app.services import relationship_facts
from app.services.audit import log_activity
from app.services.authorization import (
    can_delete_role,
    can_modify_role,
    can_modify_role_permissions,
    is_protected_role,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_role(db: Session, actor: Actor, role_id: int) -> Role:
    role = db.get(Role, role_id)
    if role is None:
        raise ResourceNotFoundError("Role", role_id)
    ensure_visible(actor, role.establishment_id, "Role", role_id)
    return role


def _name_taken(db: Session, name: str, establishment_id: int | None, exclude_id: int | None = None) -> bool:
    query = select(Role.id).where(Role.name == name, Role.establishment_id == establishment_id)
    if exclude_id is not None:
        query = query.where(Role.id != exclude_id)
    return db.execute(query).first() is not None


@router.get("/", response_model=list[RoleOut])
def list_roles(
    establishment_id: int | None = None,
    actor: Actor = Depends(require_capability("roles", "view")),
    db: Session = Depends(get_db),
) -> list[RoleOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    return list(db.execute(select(Role).where(Role.establishment_id == scope).order_by(Role.name)).scalars())


@router.post("/", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
def create_role(
    payload: RoleCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> RoleOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    if _name_taken(db, payload.name, establishment_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Role name already exists")

    role = Role(name=payload.name, description=payload.description, establishment_id=establishment_id)
    db.add(role)
    db.flush()
    log_activity(db, user=actor, action="role.create", entity_type="role", entity_id=role.id, details={"name": role.name})
    db.commit()
    db.refresh(role)
    logger.info("Role created: id=%s name=%s establishment=%s", role.id, role.name, establishment_id)
    return role


@router.get("/{role_id}", response_model=RoleOut)
def get_role(
    role_id: int,
    actor: Actor = Depends(require_capability("roles", "view")),
    db: Session = Depends(get_db),
) -> RoleOut:
    return _get_role(db, actor, role_id)


@router.put("/{role_id}", response_model=RoleOut)
def update_role(
    role_id: int,
    payload: RoleUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> RoleOut:
    role = _get_role(db, actor, role_id)
    if not can_modify_role(role.name, actor.roles):
        logger.warning("Role update denied: role=%s user=%s", role.name, actor.id)
        raise PermissionDeniedError("Protected role cannot be modified")

    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] != role.name:
        if is_protected_role(role.name):
            raise PermissionDeniedError("Protected role cannot be renamed")
        if _name_taken(db, data["name"], role.establishment_id, exclude_id=role.id):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Role name already exists")

    for key, value in data.items():
        setattr(role, key, value)
    if data:
        log_activity(db, user=actor, action="role.update", entity_type="role", entity_id=role.id, details=data)
    db.commit()
    db.refresh(role)
    return role


@router.delete("/{role_id}")
def delete_role(
    role_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    role = _get_role(db, actor, role_id)
    assigned_count = db.execute(
        select(func.count(UserRoleAssignment.id)).where(UserRoleAssignment.role_id == role.id)
    ).scalar_one()
    if not can_delete_role(role.name, assigned_count > 0):
        if is_protected_role(role.name):
            raise PermissionDeniedError("Protected system role cannot be deleted", code="protected_role")
        raise BusinessRuleError(
            f"Role cannot be deleted as it is assigned to {assigned_count} user(s)",
            details={"assignedUsers": assigned_count},
        )

    for link in db.execute(select(RolePermission).where(RolePermission.role_id == role.id)).scalars():
        db.delete(link)
    log_activity(db, user=actor, action="role.delete", entity_type="role", entity_id=role.id, details={"name": role.name})
    db.delete(role)
    db.commit()
    logger.info("Role deleted: id=%s name=%s", role_id, role.name)
    return {"success": True}


@router.get("/{role_id}/permissions", response_model=list[PermissionOut])
def list_role_permissions(
    role_id: int,
    actor: Actor = Depends(require_capability("roles", "view")),
    db: Session = Depends(get_db),
) -> list[PermissionOut]:
    role = _get_role(db, actor, role_id)
    return relationship_facts.role_permissions(db, [role.id])


@router.post("/{role_id}/permissions", response_model=list[PermissionOut])
def assign_role_permission(
    role_id: int,
    payload: RolePermissionAssign,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> list[PermissionOut]:
    role = _get_role(db, actor, role_id)
    if not can_modify_role_permissions(role.name, actor.roles):
        raise PermissionDeniedError("Cannot modify permissions for superadmin role", code="protected_role")
    permission = db.get(Permission, payload.permission_id)
    if permission is None:
        raise ResourceNotFoundError("Permission", payload.permission_id)
    if permission.establishment_id != role.establishment_id:
        raise BusinessRuleError("Permission and role belong to different establishments")

    existing = db.execute(
        select(RolePermission).where(
            RolePermission.role_id == role.id,
            RolePermission.permission_id == permission.id,
        )
    ).scalar_one_or_none()
    if existing is None:
        db.add(RolePermission(role_id=role.id, permission_id=permission.id, establishment_id=role.establishment_id))
        log_activity(
            db,
            user=actor,
            action="role.permission.assign",
            entity_type="role",
            entity_id=role.id,
            details={"permission_id": permission.id, "functionality": permission.functionality},
        )
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request assigned the same permission.
            db.rollback()
    return relationship_facts.role_permissions(db, [role.id])


@router.delete("/{role_id}/permissions/{permission_id}")
def remove_role_permission(
    role_id: int,
    permission_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    role = _get_role(db, actor, role_id)
    if not can_modify_role_permissions(role.name, actor.roles):
        raise PermissionDeniedError("Cannot modify permissions for superadmin role", code="protected_role")
    link = db.execute(
        select(RolePermission).where(
            RolePermission.role_id == role.id,
            RolePermission.permission_id == permission_id,
        )
    ).scalar_one_or_none()
    if link is None:
        raise ResourceNotFoundError("Role permission", permission_id)
    db.delete(link)
    log_activity(
        db,
        user=actor,
        action="role.permission.remove",
        entity_type="role",
        entity_id=role.id,
        details={"permission_id": permission_id},
    )
    db.commit()
    return {"success": True}


@router.get("/{role_id}/users", response_model=list[UserOut])
def list_role_users(
    role_id: int,
    actor: Actor = Depends(require_capability("roles", "view")),
    db: Session = Depends(get_db),
) -> list[UserOut]:
    role = _get_role(db, actor, role_id)
    users = db.execute(
        select(User)
        .join(UserRoleAssignment, UserRoleAssignment.user_id == User.id)
        .where(UserRoleAssignment.role_id == role.id)
        .order_by(User.name)
    ).scalars()
    return [UserOut.from_user(user, relationship_facts.user_role_names(db, user.id)) for user in users]
