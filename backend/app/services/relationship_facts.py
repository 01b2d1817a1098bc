"""Database lookups feeding the authorization engine.

These are the only queries behind the relationship facts; the decision
functions in ``app.services.authorization`` never touch the session.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.chat import ChatRoomParticipant, ChatRoomRole
from app.models.role import Permission, Role, RolePermission
from app.models.school import Department, ParentLink, SchoolClass, Student, Teacher
from app.models.timetable import TimetableEntry
from app.models.user import UserRoleAssignment


def user_roles(db: Session, user_id: int) -> list[Role]:
    return list(
        db.execute(
            select(Role)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(UserRoleAssignment.user_id == user_id)
            .order_by(Role.name)
        ).scalars()
    )


def user_role_names(db: Session, user_id: int) -> frozenset[str]:
    return frozenset(role.name.lower() for role in user_roles(db, user_id))


def role_permissions(db: Session, role_ids: list[int]) -> list[Permission]:
    if not role_ids:
        return []
    return list(
        db.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id.in_(role_ids))
            .order_by(Permission.functionality)
        ).scalars()
    )


def is_parent_of_student(db: Session, user_id: int, student_id: int) -> bool:
    link_id = db.execute(
        select(ParentLink.id).where(
            ParentLink.parent_user_id == user_id,
            ParentLink.student_id == student_id,
        )
    ).scalar_one_or_none()
    return link_id is not None


def teacher_profile(db: Session, user_id: int) -> Teacher | None:
    return db.execute(select(Teacher).where(Teacher.user_id == user_id)).scalar_one_or_none()


def is_teacher_in_class(db: Session, user_id: int, class_id: int) -> bool:
    """Head teacher of the class, or scheduled in at least one of its timetable entries."""
    school_class = db.get(SchoolClass, class_id)
    if school_class is None:
        return False
    if school_class.head_teacher_user_id == user_id:
        return True
    teacher = teacher_profile(db, user_id)
    if teacher is None:
        return False
    entry_id = db.execute(
        select(TimetableEntry.id)
        .where(TimetableEntry.class_id == class_id, TimetableEntry.teacher_id == teacher.id)
        .limit(1)
    ).scalar_one_or_none()
    return entry_id is not None


def is_teacher_in_department(db: Session, user_id: int, department_id: int) -> bool:
    department = db.get(Department, department_id)
    if department is None:
        return False
    if department.head_user_id == user_id:
        return True
    teacher = teacher_profile(db, user_id)
    return teacher is not None and teacher.department_id == department_id


def get_room_participant(db: Session, room_id: int, user_id: int) -> ChatRoomParticipant | None:
    return db.execute(
        select(ChatRoomParticipant).where(
            ChatRoomParticipant.room_id == room_id,
            ChatRoomParticipant.user_id == user_id,
        )
    ).scalar_one_or_none()


def count_room_admins(db: Session, room_id: int) -> int:
    return db.execute(
        select(func.count(ChatRoomParticipant.id)).where(
            ChatRoomParticipant.room_id == room_id,
            ChatRoomParticipant.role == ChatRoomRole.admin,
        )
    ).scalar_one()


def class_student_user_ids(db: Session, class_id: int) -> set[int]:
    rows = db.execute(
        select(Student.user_id).where(Student.class_id == class_id, Student.user_id.is_not(None))
    ).scalars()
    return set(rows)


def class_teacher_user_ids(db: Session, class_id: int) -> set[int]:
    rows = db.execute(
        select(Teacher.user_id)
        .join(TimetableEntry, TimetableEntry.teacher_id == Teacher.id)
        .where(TimetableEntry.class_id == class_id)
        .distinct()
    ).scalars()
    user_ids = set(rows)
    school_class = db.get(SchoolClass, class_id)
    if school_class is not None and school_class.head_teacher_user_id is not None:
        user_ids.add(school_class.head_teacher_user_id)
    return user_ids


def class_parent_user_ids(db: Session, class_id: int) -> set[int]:
    rows = db.execute(
        select(ParentLink.parent_user_id)
        .join(Student, Student.id == ParentLink.student_id)
        .where(Student.class_id == class_id)
        .distinct()
    ).scalars()
    return set(rows)


def department_teacher_user_ids(db: Session, department_id: int) -> set[int]:
    rows = db.execute(select(Teacher.user_id).where(Teacher.department_id == department_id)).scalars()
    return set(rows)
