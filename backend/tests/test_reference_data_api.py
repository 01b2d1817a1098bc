import pytest

from app.models.exam import Exam, Grade
from app.models.school import Student

from conftest import API


@pytest.fixture()
def admin(make_user):
    return make_user("admin", name="School Admin")


@pytest.fixture()
def foreign_admin(make_user, other_establishment):
    return make_user("admin", name="Foreign Admin", establishment_id=other_establishment.id)


def _post(client, path, payload, headers, expected=201):
    response = client.post(f"{API}{path}", json=payload, headers=headers)
    assert response.status_code == expected, response.text
    return response.json()


def test_reference_data_built_through_the_api_feeds_the_timetable(client, make_user, admin, auth_headers):
    headers = auth_headers(admin)
    year = _post(client, "/academic-years/", {"label": "2026-2027"}, headers)
    room = _post(client, "/rooms/", {"name": "Salle 12", "capacity": 35}, headers)
    school_class = _post(
        client,
        "/classes/",
        {"name": "5eme A", "academic_year_id": year["id"], "room_id": room["id"], "max_students": 30},
        headers,
    )
    subject = _post(client, "/subjects/", {"name": "Physique", "code": " phys ", "coefficient": 3}, headers)
    assert subject["code"] == "PHYS"

    head = make_user("enseignant", name="Mariam Traore")
    department = _post(client, "/departments/", {"name": "Sciences", "head_user_id": head.id}, headers)
    teacher = _post(
        client,
        "/teachers/",
        {"user_id": head.id, "employee_number": "EMP-77", "department_id": department["id"]},
        headers,
    )
    assert teacher["name"] == "Mariam Traore"

    period = _post(
        client,
        "/timetable/periods",
        {"name": "P1", "day_of_week": "Monday", "start_time": "08:00", "end_time": "09:00"},
        headers,
    )
    _post(
        client,
        "/timetable/entries",
        {
            "class_id": school_class["id"],
            "subject_id": subject["id"],
            "teacher_id": teacher["id"],
            "period_id": period["id"],
            "room_id": room["id"],
            "academic_year_id": year["id"],
        },
        headers,
    )

    refusals = {
        f"/rooms/{room['id']}": "Cannot delete room that is used in timetables",
        f"/subjects/{subject['id']}": "Cannot delete subject that is still in use",
        f"/classes/{school_class['id']}": "Cannot delete class that has students or timetable entries",
        f"/teachers/{teacher['id']}": "Cannot delete teacher who is scheduled in timetables",
        f"/departments/{department['id']}": "Cannot delete department with assigned teachers",
        f"/academic-years/{year['id']}": "Cannot delete academic year that is still in use",
    }
    for path, message in refusals.items():
        response = client.delete(f"{API}{path}", headers=headers)
        assert response.status_code == 400, path
        assert response.json()["message"] == message


def test_duplicate_reference_data_is_rejected(client, school, make_user, admin, auth_headers):
    headers = auth_headers(admin)
    _post(client, "/rooms/", {"name": "Salle 1"}, headers)

    assert client.post(f"{API}/rooms/", json={"name": "Salle 1"}, headers=headers).json() == {
        "detail": "Room name already exists"
    }
    duplicate_subject = client.post(f"{API}/subjects/", json={"name": "Maths", "code": "math"}, headers=headers)
    assert duplicate_subject.status_code == 409
    assert duplicate_subject.json()["detail"] == "Subject code already exists"
    duplicate_year = client.post(f"{API}/academic-years/", json={"label": "2025-2026"}, headers=headers)
    assert duplicate_year.status_code == 409

    profile = client.post(f"{API}/teachers/", json={"user_id": school["teacher_users"][0].id}, headers=headers)
    assert profile.status_code == 409
    assert profile.json()["detail"] == "User already has a teacher profile"


def test_reference_writes_require_admin_like_roles(client, school, auth_headers):
    teacher_headers = auth_headers(school["teacher_users"][0])

    assert client.post(f"{API}/rooms/", json={"name": "Salle 9"}, headers=teacher_headers).status_code == 403
    assert client.post(f"{API}/classes/", json={"name": "4eme C"}, headers=teacher_headers).status_code == 403
    listing = client.get(f"{API}/subjects/", headers=teacher_headers)
    assert listing.status_code == 200
    assert [item["code"] for item in listing.json()] == ["HIST", "MATH"]


def test_reference_data_stays_inside_the_establishment(
    client, db, school, establishment, other_establishment, make_user, admin, foreign_admin, auth_headers
):
    foreign_headers = auth_headers(foreign_admin)
    local_class = school["classes"][0]

    assert client.get(f"{API}/classes/{local_class.id}", headers=foreign_headers).status_code == 404
    assert client.get(f"{API}/classes/", headers=foreign_headers).json() == []
    renamed = client.put(
        f"{API}/subjects/{school['subjects'][0].id}", json={"name": "Stolen"}, headers=foreign_headers
    )
    assert renamed.status_code == 404

    cross = client.post(
        f"{API}/rooms/", json={"name": "Salle X", "establishment_id": establishment.id}, headers=foreign_headers
    )
    assert cross.status_code == 403
    assert cross.json()["details"]["code"] == "cross_establishment"

    foreign_year = client.post(
        f"{API}/classes/", json={"name": "3eme A", "academic_year_id": school["year"].id}, headers=foreign_headers
    )
    assert foreign_year.status_code == 404
    assert foreign_year.json()["message"] == f"Academic year with id {school['year'].id} not found"

    local_user = make_user("enseignant", name="Local Teacher")
    foreign_teacher = client.post(f"{API}/teachers/", json={"user_id": local_user.id}, headers=foreign_headers)
    assert foreign_teacher.status_code == 404

    outsider = make_user("parent", name="Outside Parent", establishment_id=other_establishment.id)
    head = client.post(
        f"{API}/departments/", json={"name": "Lettres", "head_user_id": outsider.id}, headers=auth_headers(admin)
    )
    assert head.status_code == 404


def test_student_enrolment_respects_class_capacity(client, db, school, admin, auth_headers):
    headers = auth_headers(admin)
    small = school["classes"][1]
    small.max_students = 1
    db.commit()

    first = _post(client, "/students", {"registration_number": "LM-100", "name": "Awa", "class_id": small.id}, headers)
    assert first["class_id"] == small.id

    full = client.post(
        f"{API}/students",
        json={"registration_number": "LM-101", "name": "Moussa", "class_id": small.id},
        headers=headers,
    )
    assert full.status_code == 400
    assert full.json()["message"] == "Class is full"

    duplicate = client.post(f"{API}/students", json={"registration_number": "LM-100", "name": "Copy"}, headers=headers)
    assert duplicate.status_code == 409

    # Saving the same class again does not count the pupil twice.
    same = client.put(f"{API}/students/{first['id']}", json={"class_id": small.id, "name": "Awa D."}, headers=headers)
    assert same.status_code == 200
    assert same.json()["name"] == "Awa D."


def test_parent_links_grant_access_to_the_student(client, db, establishment, school, make_user, admin, auth_headers):
    headers = auth_headers(admin)
    parent = make_user("parent", name="Fatou Sy")
    student = _post(
        client,
        "/students",
        {"registration_number": "LM-200", "name": "Binta Sy", "class_id": school["classes"][0].id},
        headers,
    )

    assert client.get(f"{API}/students/{student['id']}", headers=auth_headers(parent)).status_code == 403

    link = _post(client, f"/students/{student['id']}/parents", {"parent_user_id": parent.id, "relationship": "mother"}, headers)
    assert link["relationship"] == "mother"
    again = client.post(f"{API}/students/{student['id']}/parents", json={"parent_user_id": parent.id}, headers=headers)
    assert again.status_code == 409

    seen = client.get(f"{API}/students/{student['id']}", headers=auth_headers(parent))
    assert seen.status_code == 200
    assert seen.json()["registration_number"] == "LM-200"

    removed = client.delete(f"{API}/students/{student['id']}/parents/{parent.id}", headers=headers)
    assert removed.status_code == 200
    assert client.get(f"{API}/students/{student['id']}", headers=auth_headers(parent)).status_code == 403
    missing = client.delete(f"{API}/students/{student['id']}/parents/{parent.id}", headers=headers)
    assert missing.status_code == 404


def test_students_with_grades_cannot_be_deleted(client, db, establishment, school, admin, auth_headers):
    student = Student(
        registration_number="LM-300",
        name="Ousmane Ba",
        class_id=school["classes"][0].id,
        establishment_id=establishment.id,
    )
    exam = Exam(
        title="Controle 1",
        class_id=school["classes"][0].id,
        subject_id=school["subjects"][0].id,
        teacher_user_id=school["teacher_users"][0].id,
        establishment_id=establishment.id,
    )
    db.add_all([student, exam])
    db.flush()
    db.add(Grade(exam_id=exam.id, student_id=student.id, score=12))
    db.commit()

    refused = client.delete(f"{API}/students/{student.id}", headers=auth_headers(admin))
    assert refused.status_code == 400
    assert refused.json()["message"] == "Cannot delete student with recorded grades or submissions"


def test_class_roster_is_limited_to_staff(client, db, establishment, school, make_user, auth_headers):
    school_class = school["classes"][0]
    db.add(Student(registration_number="LM-400", name="Zara", class_id=school_class.id, establishment_id=establishment.id))
    db.commit()

    roster = client.get(f"{API}/classes/{school_class.id}/students", headers=auth_headers(school["teacher_users"][0]))
    assert roster.status_code == 200
    assert [item["name"] for item in roster.json()] == ["Zara"]

    parent = make_user("parent")
    assert client.get(f"{API}/classes/{school_class.id}/students", headers=auth_headers(parent)).status_code == 403
