import pytest

from app.models.school import Student

from conftest import API


@pytest.fixture()
def pupils(db, establishment, other_establishment, school, make_user):
    account = make_user("apprenant", name="Awa Diallo")
    first = Student(
        registration_number="LM-001",
        name="Awa Diallo",
        user_id=account.id,
        class_id=school["classes"][0].id,
        establishment_id=establishment.id,
    )
    second = Student(registration_number="LM-002", name="Moussa Kone", establishment_id=establishment.id)
    foreign = Student(registration_number="CV-001", name="Nina", establishment_id=other_establishment.id)
    db.add_all([first, second, foreign])
    db.commit()
    return {"students": [first, second], "foreign": foreign, "account": account}


def _create_activity(client, headers, **overrides):
    payload = {"name": "Club de chess", "category": "club", "max_participants": 1, **overrides}
    response = client.post(f"{API}/activities/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_responsible_defaults_to_the_creator(client, school, make_user, auth_headers):
    owner, colleague = school["teacher_users"]
    activity = _create_activity(client, auth_headers(owner))
    assert activity["responsible_user_id"] == owner.id
    assert activity["status"] == "active"

    refused = client.put(
        f"{API}/activities/{activity['id']}", json={"location": "CDI"}, headers=auth_headers(colleague)
    )
    assert refused.status_code == 403
    assert refused.json()["details"]["code"] == "not_owner"

    admin = make_user("admin")
    handed_over = client.put(
        f"{API}/activities/{activity['id']}",
        json={"responsible_user_id": colleague.id},
        headers=auth_headers(admin),
    )
    assert handed_over.status_code == 200
    assert handed_over.json()["responsible_user_id"] == colleague.id

    parent = make_user("parent")
    assert client.post(f"{API}/activities/", json={"name": "Theatre"}, headers=auth_headers(parent)).status_code == 403


def test_participants_respect_the_maximum(client, school, pupils, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    activity = _create_activity(client, headers)
    path = f"{API}/activities/{activity['id']}/participants"
    first, second = pupils["students"]

    assert client.post(path, json={"student_id": first.id}, headers=headers).status_code == 201
    duplicate = client.post(path, json={"student_id": first.id}, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Student is already a participant"
    full = client.post(path, json={"student_id": second.id}, headers=headers)
    assert full.status_code == 400
    assert full.json()["message"] == "Activity has reached maximum number of participants"

    shrink = client.put(f"{API}/activities/{activity['id']}", json={"max_participants": 1}, headers=headers)
    assert shrink.status_code == 200

    assert client.delete(f"{path}/{second.id}", headers=headers).status_code == 404
    assert client.delete(f"{path}/{first.id}", headers=headers).status_code == 200
    assert client.get(path, headers=headers).json() == []


def test_foreign_pupils_cannot_join(client, school, pupils, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    activity = _create_activity(client, headers)

    response = client.post(
        f"{API}/activities/{activity['id']}/participants",
        json={"student_id": pupils["foreign"].id},
        headers=headers,
    )
    assert response.status_code == 404
    assert response.json()["message"] == f"Student with id {pupils['foreign'].id} not found"


def test_pupils_see_their_own_activities(client, school, pupils, make_user, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    activity = _create_activity(client, headers, max_participants=None)
    first = pupils["students"][0]
    client.post(f"{API}/activities/{activity['id']}/participants", json={"student_id": first.id}, headers=headers)

    own = client.get(f"{API}/students/{first.id}/activities", headers=auth_headers(pupils["account"]))
    assert own.status_code == 200
    assert [item["name"] for item in own.json()] == ["Club de chess"]

    stranger = make_user("parent")
    assert client.get(f"{API}/students/{first.id}/activities", headers=auth_headers(stranger)).status_code == 403


def test_deleting_an_activity_archives_it(client, school, pupils, auth_headers):
    headers = auth_headers(school["teacher_users"][0])
    activity = _create_activity(client, headers)

    assert client.delete(f"{API}/activities/{activity['id']}", headers=headers).status_code == 200
    assert client.get(f"{API}/activities/", headers=headers).json() == []
    archived = client.get(f"{API}/activities/", params={"include_archived": True}, headers=headers).json()
    assert [item["status"] for item in archived] == ["archived"]

    joined = client.post(
        f"{API}/activities/{activity['id']}/participants",
        json={"student_id": pupils["students"][0].id},
        headers=headers,
    )
    assert joined.status_code == 400
    assert joined.json()["message"] == "Activity is archived"
