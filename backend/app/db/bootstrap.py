from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.db.base import Base
from app.db.session import engine
from app.models.role import Role
from app.services.authorization import SYSTEM_ROLES
import app.models  # noqa: F401

logger = logging.getLogger(__name__)

SYSTEM_ROLE_DESCRIPTIONS = {
    "superadmin": "Platform super administrator",
    "admin": "Establishment administrator",
    "enseignant": "Teacher",
    "parent": "Parent or guardian",
    "apprenant": "Student",
    "principal": "Head of establishment",
    "censeur": "Deputy head in charge of discipline and timetables",
}


def ensure_schema() -> None:
    """Create missing tables when ``AUTO_CREATE_TABLES`` is set; Alembic owns the schema otherwise."""
    if not get_settings().auto_create_tables:
        return
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Schema bootstrap failed")
        raise RuntimeError("Schema bootstrap failed") from exc


def seed_system_roles(db: Session, establishment_id: int) -> list[str]:
    """Add any missing system roles for an establishment; returns the names created."""
    existing = set(
        db.execute(select(Role.name).where(Role.establishment_id == establishment_id)).scalars()
    )
    created = []
    for name in sorted(SYSTEM_ROLES - existing):
        db.add(
            Role(
                name=name,
                description=SYSTEM_ROLE_DESCRIPTIONS.get(name),
                establishment_id=establishment_id,
            )
        )
        created.append(name)
    if created:
        db.flush()
        logger.info("Seeded system roles for establishment %s: %s", establishment_id, ", ".join(created))
    return created
