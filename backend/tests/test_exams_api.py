import pytest

from app.models.school import ParentLink, Student, Subject

from conftest import API


@pytest.fixture()
def pupils(db, establishment, school, make_user):
    """Two pupils of 6eme A with accounts, one pupil of 6eme B, and a parent of the first pupil."""
    first_account = make_user("apprenant", name="Awa Diallo")
    second_account = make_user("apprenant", name="Moussa Kone")
    parent = make_user("parent", name="Fatou Diallo")
    stranger_parent = make_user("parent", name="Other Parent")
    first = Student(
        registration_number="LM-001",
        name="Awa Diallo",
        user_id=first_account.id,
        class_id=school["classes"][0].id,
        establishment_id=establishment.id,
    )
    second = Student(
        registration_number="LM-002",
        name="Moussa Kone",
        user_id=second_account.id,
        class_id=school["classes"][0].id,
        establishment_id=establishment.id,
    )
    elsewhere = Student(
        registration_number="LM-003",
        name="Ibrahim Sow",
        class_id=school["classes"][1].id,
        establishment_id=establishment.id,
    )
    db.add_all([first, second, elsewhere])
    db.flush()
    db.add(ParentLink(parent_user_id=parent.id, student_id=first.id))
    db.commit()
    return {
        "students": [first, second, elsewhere],
        "accounts": [first_account, second_account],
        "parent": parent,
        "stranger_parent": stranger_parent,
    }


def _create_exam(client, headers, school, *, subject_index=0, max_score=20.0, title="Controle 1"):
    response = client.post(
        f"{API}/exams/",
        json={
            "title": title,
            "class_id": school["classes"][0].id,
            "subject_id": school["subjects"][subject_index].id,
            "max_score": max_score,
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_only_the_owner_or_admin_like_staff_can_manage_an_exam(client, school, make_user, auth_headers):
    owner, colleague = school["teacher_users"]
    exam = _create_exam(client, auth_headers(owner), school)
    assert exam["teacher_user_id"] == owner.id

    refused = client.put(f"{API}/exams/{exam['id']}", json={"title": "Mine now"}, headers=auth_headers(colleague))
    assert refused.status_code == 403
    assert refused.json()["message"] == "You can only manage exams you created"
    assert refused.json()["details"]["code"] == "not_owner"

    renamed = client.put(f"{API}/exams/{exam['id']}", json={"title": "Devoir 1"}, headers=auth_headers(owner))
    assert renamed.status_code == 200
    assert renamed.json()["title"] == "Devoir 1"

    censeur = make_user("censeur")
    assert client.delete(f"{API}/exams/{exam['id']}", headers=auth_headers(censeur)).status_code == 200


def test_parents_cannot_create_exams(client, school, pupils, auth_headers):
    response = client.post(
        f"{API}/exams/",
        json={"title": "Fake", "class_id": school["classes"][0].id, "subject_id": school["subjects"][0].id},
        headers=auth_headers(pupils["parent"]),
    )
    assert response.status_code == 403


def test_recording_grades(client, school, pupils, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    exam = _create_exam(client, headers, school)
    first, _, elsewhere = pupils["students"]

    recorded = client.post(f"{API}/exams/{exam['id']}/grades", json={"student_id": first.id, "score": 12}, headers=headers)
    assert recorded.status_code == 200
    corrected = client.post(
        f"{API}/exams/{exam['id']}/grades",
        json={"student_id": first.id, "score": 13.5, "comment": "Recount"},
        headers=headers,
    )
    assert corrected.status_code == 200
    assert corrected.json()["id"] == recorded.json()["id"]
    assert corrected.json()["score"] == 13.5

    too_high = client.post(f"{API}/exams/{exam['id']}/grades", json={"student_id": first.id, "score": 21}, headers=headers)
    assert too_high.status_code == 400

    wrong_class = client.post(
        f"{API}/exams/{exam['id']}/grades",
        json={"student_id": elsewhere.id, "score": 10},
        headers=headers,
    )
    assert wrong_class.status_code == 400
    assert wrong_class.json()["message"] == "Student is not enrolled in the exam's class"

    grades = client.get(f"{API}/exams/{exam['id']}/grades", headers=headers)
    assert [(grade["student_id"], grade["score"]) for grade in grades.json()] == [(first.id, 13.5)]


def test_student_data_visibility(client, school, pupils, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    exam = _create_exam(client, headers, school)
    first, second, _ = pupils["students"]
    client.post(f"{API}/exams/{exam['id']}/grades", json={"student_id": first.id, "score": 15}, headers=headers)

    url = f"{API}/students/{first.id}/grades"
    assert client.get(url, headers=auth_headers(pupils["parent"])).status_code == 200
    assert client.get(url, headers=auth_headers(pupils["accounts"][0])).status_code == 200
    assert client.get(url, headers=headers).status_code == 200

    denied = client.get(url, headers=auth_headers(pupils["stranger_parent"]))
    assert denied.status_code == 403
    assert denied.json()["message"] == "Not authorized to view this student's data"
    assert client.get(url, headers=auth_headers(pupils["accounts"][1])).status_code == 403

    own = client.get(f"{API}/students/{second.id}/grades", headers=auth_headers(pupils["accounts"][1]))
    assert own.status_code == 200
    assert own.json() == []


def test_bulletin_weights_subjects_by_coefficient(client, school, pupils, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    first = pupils["students"][0]
    math_one = _create_exam(client, headers, school, title="Maths 1")
    math_two = _create_exam(client, headers, school, title="Maths 2", max_score=10)
    history = _create_exam(client, headers, school, subject_index=1, title="Histoire")
    for exam, score in ((math_one, 14), (math_two, 8), (history, 6)):
        response = client.post(
            f"{API}/exams/{exam['id']}/grades",
            json={"student_id": first.id, "score": score},
            headers=headers,
        )
        assert response.status_code == 200

    bulletin = client.get(f"{API}/students/{first.id}/bulletin", headers=auth_headers(pupils["parent"]))
    assert bulletin.status_code == 200
    body = bulletin.json()
    averages = {line["subject_id"]: line["average"] for line in body["subjects"]}
    assert averages == {school["subjects"][0].id: 15.0, school["subjects"][1].id: 6.0}
    assert body["general_average"] == 12.0
    assert body["decision"] == "promoted"
    assert body["rank"] is None


def test_bulletin_without_grades_is_pending(client, pupils, auth_headers):
    second = pupils["students"][1]
    bulletin = client.get(f"{API}/students/{second.id}/bulletin", headers=auth_headers(pupils["accounts"][1]))
    assert bulletin.status_code == 200
    assert bulletin.json()["general_average"] is None
    assert bulletin.json()["decision"] == "pending"


def test_exam_references_stay_inside_the_establishment(client, db, school, other_establishment, auth_headers):
    foreign_subject = Subject(name="Latin", code="LAT", establishment_id=other_establishment.id)
    foreign_student = Student(
        registration_number="CV-009",
        name="Foreign Pupil",
        class_id=school["classes"][0].id,
        establishment_id=other_establishment.id,
    )
    db.add_all([foreign_subject, foreign_student])
    db.commit()
    headers = auth_headers(school["teacher_users"][0])

    refused = client.post(
        f"{API}/exams/",
        json={"title": "Version latine", "class_id": school["classes"][0].id, "subject_id": foreign_subject.id},
        headers=headers,
    )
    assert refused.status_code == 404
    assert refused.json()["message"] == f"Subject with id {foreign_subject.id} not found"

    exam = _create_exam(client, headers, school)
    grade = client.post(
        f"{API}/exams/{exam['id']}/grades",
        json={"student_id": foreign_student.id, "score": 10},
        headers=headers,
    )
    assert grade.status_code == 404
