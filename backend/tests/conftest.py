import os

# Cheap hashing and a throwaway default engine; must run before settings are cached.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db
from app.core.security import create_access_token, get_password_hash
from app.db.base import Base
from app.db.bootstrap import seed_system_roles
from app.main import app
from app.models.establishment import Establishment
from app.models.role import Role
from app.models.school import AcademicYear, SchoolClass, Subject, Teacher
from app.models.user import User, UserRoleAssignment, UserStatus
from app.services.rate_limit import clear_rate_limiter

API = "/api/v1"
PASSWORD = "password123"


@pytest.fixture()
def engine():
    clear_rate_limiter()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()
    clear_rate_limiter()


@pytest.fixture()
def db(engine):
    # Test-side session; objects stay readable after commit without reopening a transaction.
    session = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def establishment(db):
    item = Establishment(name="Lycee Moderne", code="LM01")
    db.add(item)
    db.flush()
    seed_system_roles(db, item.id)
    db.commit()
    return item


@pytest.fixture()
def other_establishment(db):
    """A second tenant whose rows must stay invisible to the first one."""
    item = Establishment(name="College Voisin", code="CV02")
    db.add(item)
    db.flush()
    seed_system_roles(db, item.id)
    db.commit()
    return item


@pytest.fixture()
def make_user(db, establishment):
    counter = {"value": 0}

    def factory(*roles: str, name: str | None = None, status: UserStatus = UserStatus.active, establishment_id=None):
        counter["value"] += 1
        label = name or f"user{counter['value']}"
        user = User(
            name=label,
            email=f"{label.lower().replace(' ', '.')}@lycee-moderne.edu",
            hashed_password=get_password_hash(PASSWORD),
            status=status,
            establishment_id=establishment_id or establishment.id,
        )
        db.add(user)
        db.flush()
        for role_name in roles:
            role = db.execute(
                select(Role).where(Role.name == role_name, Role.establishment_id == user.establishment_id)
            ).scalar_one()
            db.add(UserRoleAssignment(user_id=user.id, role_id=role.id, establishment_id=role.establishment_id))
        db.commit()
        return user

    return factory


@pytest.fixture()
def auth_headers():
    def factory(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return factory


@pytest.fixture()
def school(db, establishment, make_user):
    """One academic year, two classes, two subjects and two teachers."""
    year = AcademicYear(label="2025-2026", establishment_id=establishment.id)
    db.add(year)
    db.flush()
    teacher_users = [make_user("enseignant", name="Teacher One"), make_user("enseignant", name="Teacher Two")]
    teachers = [Teacher(user_id=user.id, establishment_id=establishment.id) for user in teacher_users]
    classes = [
        SchoolClass(name="6eme A", establishment_id=establishment.id, academic_year_id=year.id),
        SchoolClass(name="6eme B", establishment_id=establishment.id, academic_year_id=year.id),
    ]
    subjects = [
        Subject(name="Mathematics", code="MATH", coefficient=4, establishment_id=establishment.id),
        Subject(name="History", code="HIST", coefficient=2, establishment_id=establishment.id),
    ]
    db.add_all(teachers + classes + subjects)
    db.commit()
    return {
        "year": year,
        "teachers": teachers,
        "teacher_users": teacher_users,
        "classes": classes,
        "subjects": subjects,
    }
