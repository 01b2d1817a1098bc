import logging
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass
from typing import TypeVar

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.core.security import decode_token
from app.db.session import SessionLocal
from app.models.user import User
from app.services import relationship_facts
from app.services.authorization import ADMIN_LIKE_ROLES, SUPERADMIN_ROLE, has_permission, role_names

logger = logging.getLogger(__name__)

security = HTTPBearer()

ModelT = TypeVar("ModelT")


@dataclass(frozen=True)
class Actor:
    """The authenticated caller with role names loaded from storage, never from the token."""

    id: int
    name: str
    email: str
    establishment_id: int | None
    roles: frozenset[str]
    user: User

    @property
    def is_superadmin(self) -> bool:
        return SUPERADMIN_ROLE in self.roles


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
        user_id = int(subject)
    except (JWTError, ValueError) as exc:
        raise credentials_exception from exc

    user = db.get(User, user_id)
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    return user


def get_current_actor(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Actor:
    return Actor(
        id=current_user.id,
        name=current_user.name,
        email=current_user.email,
        establishment_id=current_user.establishment_id,
        roles=relationship_facts.user_role_names(db, current_user.id),
        user=current_user,
    )


def require_roles(*roles: str) -> Callable[[Actor], Actor]:
    allowed_roles: Iterable[str] = role_names(roles)

    def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.roles.isdisjoint(allowed_roles):
            logger.warning(
                "Role check denied: user=%s roles=%s required=%s",
                actor.id,
                sorted(actor.roles),
                sorted(allowed_roles),
            )
            raise PermissionDeniedError("Insufficient permissions")
        return actor

    return role_checker


def require_admin_like() -> Callable[[Actor], Actor]:
    return require_roles(*ADMIN_LIKE_ROLES)


def require_capability(
    functionality: str,
    capability: str,
    *fallback_roles: str,
) -> Callable[[Actor, Session], Actor]:
    """Allow callers holding one of ``fallback_roles`` or a role granted ``capability`` on ``functionality``."""
    fallback: Iterable[str] = role_names(fallback_roles or ADMIN_LIKE_ROLES)

    def capability_checker(
        actor: Actor = Depends(get_current_actor),
        db: Session = Depends(get_db),
    ) -> Actor:
        if not actor.roles.isdisjoint(fallback):
            return actor
        role_ids = [role.id for role in relationship_facts.user_roles(db, actor.id)]
        if has_permission(relationship_facts.role_permissions(db, role_ids), functionality, capability):
            return actor
        logger.warning("Capability check denied: user=%s %s:%s", actor.id, functionality, capability)
        raise PermissionDeniedError("Insufficient permissions")

    return capability_checker


def scoped_establishment_id(actor: Actor, requested: int | None = None) -> int:
    """Resolve the tenant a write applies to; only superadmins may target another establishment."""
    if requested is not None and requested != actor.establishment_id and not actor.is_superadmin:
        raise PermissionDeniedError("Cannot act on another establishment", code="cross_establishment")
    establishment_id = requested if requested is not None else actor.establishment_id
    if establishment_id is None:
        raise BusinessRuleError("establishment_id is required")
    return establishment_id


def ensure_visible(actor: Actor, establishment_id: int | None, resource_type: str, resource_id: int) -> None:
    # Rows from other tenants are reported as missing.
    if actor.is_superadmin or establishment_id is None or establishment_id == actor.establishment_id:
        return
    raise ResourceNotFoundError(resource_type, resource_id)


def get_visible(db: Session, actor: Actor, model: type[ModelT], resource_id: int, resource_type: str) -> ModelT:
    """Load an establishment-scoped row, reporting rows of other tenants as missing."""
    item = db.get(model, resource_id)
    if item is None:
        raise ResourceNotFoundError(resource_type, resource_id)
    ensure_visible(actor, item.establishment_id, resource_type, resource_id)
    return item


def get_in_establishment(
    db: Session,
    model: type[ModelT],
    resource_id: int,
    establishment_id: int | None,
    resource_type: str,
) -> ModelT:
    """Load a row referenced by a write; it must belong to the establishment being written to."""
    item = db.get(model, resource_id)
    if item is None or item.establishment_id != establishment_id:
        raise ResourceNotFoundError(resource_type, resource_id)
    return item
