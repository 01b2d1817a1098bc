import pytest

from app.models.school import ParentLink, SchoolClass, Student

from conftest import API


@pytest.fixture()
def pupils(db, establishment, school, make_user):
    """A pupil of 6eme A with a linked parent, and a pupil of 6eme B."""
    first_account = make_user("apprenant", name="Awa Diallo")
    other_account = make_user("apprenant", name="Ibrahim Sow")
    parent = make_user("parent", name="Fatou Diallo")
    first = Student(
        registration_number="LM-001",
        name="Awa Diallo",
        user_id=first_account.id,
        class_id=school["classes"][0].id,
        establishment_id=establishment.id,
    )
    other = Student(
        registration_number="LM-002",
        name="Ibrahim Sow",
        user_id=other_account.id,
        class_id=school["classes"][1].id,
        establishment_id=establishment.id,
    )
    db.add_all([first, other])
    db.flush()
    db.add(ParentLink(parent_user_id=parent.id, student_id=first.id))
    db.commit()
    return {"students": [first, other], "accounts": [first_account, other_account], "parent": parent}


def _create_homework(client, headers, school, *, title="Exercices 1 a 5"):
    response = client.post(
        f"{API}/homework/",
        json={
            "title": title,
            "class_id": school["classes"][0].id,
            "subject_id": school["subjects"][0].id,
            "due_date": "2026-03-20",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_only_the_creator_or_admin_like_staff_can_edit_homework(client, school, make_user, auth_headers):
    owner, colleague = school["teacher_users"]
    homework = _create_homework(client, auth_headers(owner), school)
    assert homework["created_by_id"] == owner.id

    refused = client.put(f"{API}/homework/{homework['id']}", json={"title": "Mine"}, headers=auth_headers(colleague))
    assert refused.status_code == 403
    assert refused.json()["details"]["code"] == "not_owner"

    updated = client.put(f"{API}/homework/{homework['id']}", json={"title": "Exercices 6"}, headers=auth_headers(owner))
    assert updated.status_code == 200
    assert updated.json()["title"] == "Exercices 6"

    principal = make_user("principal")
    assert client.delete(f"{API}/homework/{homework['id']}", headers=auth_headers(principal)).status_code == 200
    assert client.get(f"{API}/homework/{homework['id']}", headers=auth_headers(owner)).status_code == 404


def test_submissions_follow_class_membership(client, school, pupils, auth_headers):
    owner = school["teacher_users"][0]
    homework = _create_homework(client, auth_headers(owner), school)
    path = f"{API}/homework/{homework['id']}/submissions"
    pupil, other_pupil = pupils["accounts"]

    submitted = client.post(path, json={"content": "  x = 4  "}, headers=auth_headers(pupil))
    assert submitted.status_code == 201
    assert submitted.json()["content"] == "x = 4"
    assert submitted.json()["status"] == "submitted"

    again = client.post(path, json={"content": "x = 5"}, headers=auth_headers(pupil))
    assert again.status_code == 400
    assert again.json()["message"] == "You have already submitted this homework assignment"

    wrong_class = client.post(path, json={"content": "x = 4"}, headers=auth_headers(other_pupil))
    assert wrong_class.status_code == 403
    assert wrong_class.json()["message"] == "This homework is not assigned to your class"

    not_a_pupil = client.post(path, json={"content": "x = 4"}, headers=auth_headers(pupils["parent"]))
    assert not_a_pupil.status_code == 403
    assert not_a_pupil.json()["message"] == "Only students can submit homework"

    deleted = client.delete(f"{API}/homework/{homework['id']}", headers=auth_headers(owner))
    assert deleted.status_code == 400


def test_grading_is_reserved_to_the_creator(client, school, pupils, auth_headers):
    owner, colleague = school["teacher_users"]
    homework = _create_homework(client, auth_headers(owner), school)
    path = f"{API}/homework/{homework['id']}/submissions"
    submission = client.post(path, json={"content": "Answer"}, headers=auth_headers(pupils["accounts"][0])).json()

    assert client.get(path, headers=auth_headers(colleague)).status_code == 403
    listing = client.get(path, headers=auth_headers(owner))
    assert [item["id"] for item in listing.json()] == [submission["id"]]

    grade_path = f"{path}/{submission['id']}/grade"
    assert client.put(grade_path, json={"score": 15}, headers=auth_headers(colleague)).status_code == 403
    assert client.put(grade_path, json={"score": 21}, headers=auth_headers(owner)).status_code == 422
    graded = client.put(grade_path, json={"score": 15, "feedback": "Bien"}, headers=auth_headers(owner))
    assert graded.status_code == 200
    body = graded.json()
    assert body["status"] == "graded"
    assert body["score"] == 15
    assert body["graded_by_id"] == owner.id
    assert body["graded_at"] is not None

    missing = client.put(f"{path}/{submission['id'] + 99}/grade", json={"score": 10}, headers=auth_headers(owner))
    assert missing.status_code == 404


def test_submissions_are_visible_to_the_pupil_and_linked_parent(client, school, pupils, make_user, auth_headers):
    homework = _create_homework(client, auth_headers(school["teacher_users"][0]), school)
    client.post(
        f"{API}/homework/{homework['id']}/submissions",
        json={"content": "Answer"},
        headers=auth_headers(pupils["accounts"][0]),
    )
    student_path = f"{API}/students/{pupils['students'][0].id}/submissions"

    for viewer in (pupils["accounts"][0], pupils["parent"]):
        response = client.get(student_path, headers=auth_headers(viewer))
        assert response.status_code == 200
        assert [item["homework_id"] for item in response.json()] == [homework["id"]]

    assert client.get(student_path, headers=auth_headers(make_user("parent"))).status_code == 403
    assert client.get(student_path, headers=auth_headers(pupils["accounts"][1])).status_code == 403


def test_homework_cannot_target_another_establishment(client, db, school, other_establishment, auth_headers):
    foreign_class = SchoolClass(name="5eme C", establishment_id=other_establishment.id)
    db.add(foreign_class)
    db.commit()

    response = client.post(
        f"{API}/homework/",
        json={"title": "Lecture", "class_id": foreign_class.id, "subject_id": school["subjects"][0].id},
        headers=auth_headers(school["teacher_users"][0]),
    )
    assert response.status_code == 404
    assert response.json()["message"] == f"Class with id {foreign_class.id} not found"
