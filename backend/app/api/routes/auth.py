import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db
from app.core.config import get_settings
from app.core.security import create_access_token, get_password_hash, verify_password
from app.models.establishment import Establishment
from app.models.user import User, UserStatus
from app.schemas.user import Token, UserCreate, UserLogin, UserOut
from app.services import relationship_facts
from app.services.rate_limit import enforce_rate_limit

settings = get_settings()
router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(payload: UserCreate, db: Session = Depends(get_db)) -> UserOut:
    existing = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    if payload.establishment_id is not None and db.get(Establishment, payload.establishment_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Establishment not found")

    # New accounts start inactive and without roles until an administrator activates them.
    user = User(
        name=payload.name,
        email=payload.email,
        hashed_password=get_password_hash(payload.password),
        establishment_id=payload.establishment_id,
        status=UserStatus.inactive,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered") from exc

    db.refresh(user)
    logger.info("User registered: id=%s establishment=%s", user.id, user.establishment_id)
    return UserOut.from_user(user, set())


@router.post("/login", response_model=Token)
def login(payload: UserLogin, request: Request, db: Session = Depends(get_db)) -> Token:
    enforce_rate_limit(
        request=request,
        scope="auth.login",
        limit=settings.login_rate_limit_max_requests,
        window_seconds=settings.login_rate_limit_window_seconds,
        identity=payload.email,
    )
    user = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.hashed_password):
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is not active")

    roles = relationship_facts.user_role_names(db, user.id)
    access_token = create_access_token(user.id, roles=roles)
    logger.info("User logged in: id=%s", user.id)
    return Token(access_token=access_token, token_type="bearer", user=UserOut.from_user(user, roles))


@router.get("/me", response_model=UserOut)
def me(actor: Actor = Depends(get_current_actor)) -> UserOut:
    return UserOut.from_user(actor.user, actor.roles)
