import pytest

from app.models.school import Department, ParentLink, SchoolClass, Student

from conftest import API


@pytest.fixture()
def room_members(make_user):
    return {
        "owner": make_user("admin", name="Room Owner"),
        "alice": make_user("parent", name="Alice Member"),
        "bob": make_user("parent", name="Bob Member"),
        "mod": make_user("enseignant", name="Mona Moderator"),
        "carl": make_user("apprenant", name="Carl Newcomer"),
        "dina": make_user("apprenant", name="Dina Newcomer"),
        "outsider": make_user("parent", name="Outsider"),
    }


@pytest.fixture()
def room(client, room_members, auth_headers):
    response = client.post(
        f"{API}/chat/rooms",
        json={
            "name": "Conseil de classe",
            "type": "custom",
            "participant_ids": [room_members["alice"].id, room_members["bob"].id],
        },
        headers=auth_headers(room_members["owner"]),
    )
    assert response.status_code == 201, response.text
    return response.json()


def _roles(room_detail):
    return {participant["user_id"]: participant["role"] for participant in room_detail["participants"]}


def test_creator_administers_the_new_room(room, room_members):
    roles = _roles(room)
    assert roles[room_members["owner"].id] == "admin"
    assert roles[room_members["alice"].id] == "member"
    assert roles[room_members["bob"].id] == "member"


def test_room_hierarchy_for_adding_participants(client, room, room_members, auth_headers):
    base = f"{API}/chat/rooms/{room['id']}/participants"
    owner = auth_headers(room_members["owner"])
    added = client.post(base, json={"user_id": room_members["mod"].id, "role": "moderator"}, headers=owner)
    assert added.status_code == 201

    moderator = auth_headers(room_members["mod"])
    assert client.post(base, json={"user_id": room_members["carl"].id}, headers=moderator).status_code == 201
    promoted = client.post(base, json={"user_id": room_members["dina"].id, "role": "moderator"}, headers=moderator)
    assert promoted.status_code == 403
    assert promoted.json()["message"] == "Only room admins can add moderators or admins"

    member = auth_headers(room_members["alice"])
    by_member = client.post(base, json={"user_id": room_members["dina"].id}, headers=member)
    assert by_member.status_code == 403
    assert by_member.json()["message"] == "Only room admins and moderators can add participants"

    again = client.post(base, json={"user_id": room_members["carl"].id}, headers=owner)
    assert again.status_code == 409

    outsider = client.post(base, json={"user_id": room_members["dina"].id}, headers=auth_headers(room_members["outsider"]))
    assert outsider.status_code == 403
    assert outsider.json()["details"]["code"] == "not_participant"


def test_room_hierarchy_for_removals(client, room, room_members, auth_headers):
    base = f"{API}/chat/rooms/{room['id']}/participants"
    owner = auth_headers(room_members["owner"])
    client.post(base, json={"user_id": room_members["mod"].id, "role": "moderator"}, headers=owner)
    moderator = auth_headers(room_members["mod"])

    by_member = client.delete(f"{base}/{room_members['bob'].id}", headers=auth_headers(room_members["alice"]))
    assert by_member.status_code == 403

    on_admin = client.delete(f"{base}/{room_members['owner'].id}", headers=moderator)
    assert on_admin.status_code == 403
    assert on_admin.json()["message"] == "Moderators cannot remove admins from the chat room"

    assert client.delete(f"{base}/{room_members['bob'].id}", headers=moderator).status_code == 200
    left = client.delete(f"{base}/{room_members['alice'].id}", headers=auth_headers(room_members["alice"]))
    assert left.status_code == 200

    detail = client.get(f"{API}/chat/rooms/{room['id']}", headers=owner).json()
    assert set(_roles(detail)) == {room_members["owner"].id, room_members["mod"].id}

    missing = client.delete(f"{base}/{room_members['carl'].id}", headers=owner)
    assert missing.status_code == 404


def test_last_admin_must_stay(client, room, room_members, auth_headers):
    base = f"{API}/chat/rooms/{room['id']}/participants"
    owner_id = room_members["owner"].id
    owner = auth_headers(room_members["owner"])

    leaving = client.delete(f"{base}/{owner_id}", headers=owner)
    assert leaving.status_code == 403
    assert leaving.json()["details"]["code"] == "last_admin"

    demoted = client.put(f"{base}/{owner_id}", json={"role": "member"}, headers=owner)
    assert demoted.status_code == 403
    assert demoted.json()["message"] == "Cannot demote the last admin of the chat room"

    by_member = client.put(
        f"{base}/{room_members['bob'].id}",
        json={"role": "admin"},
        headers=auth_headers(room_members["alice"]),
    )
    assert by_member.status_code == 403
    assert by_member.json()["message"] == "Only room admins can update participant roles"

    promoted = client.put(f"{base}/{room_members['alice'].id}", json={"role": "admin"}, headers=owner)
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "admin"

    assert client.delete(f"{base}/{owner_id}", headers=owner).status_code == 200
    alice = auth_headers(room_members["alice"])
    last = client.delete(f"{base}/{room_members['alice'].id}", headers=alice)
    assert last.status_code == 403


def test_messages_are_for_participants_only(client, room, room_members, auth_headers):
    url = f"{API}/chat/rooms/{room['id']}/messages"
    sent = client.post(url, json={"content": " Bonjour a tous "}, headers=auth_headers(room_members["alice"]))
    assert sent.status_code == 201
    assert sent.json()["content"] == "Bonjour a tous"

    history = client.get(url, headers=auth_headers(room_members["bob"]))
    assert [message["content"] for message in history.json()] == ["Bonjour a tous"]

    assert client.get(url, headers=auth_headers(room_members["outsider"])).status_code == 403
    assert client.get(f"{API}/chat/rooms/{room['id']}", headers=auth_headers(room_members["outsider"])).status_code == 403

    listed = client.get(f"{API}/chat/rooms", headers=auth_headers(room_members["bob"]))
    assert [item["id"] for item in listed.json()] == [room["id"]]
    assert client.get(f"{API}/chat/rooms", headers=auth_headers(room_members["outsider"])).json() == []


def test_class_room_requires_teaching_the_class(client, db, establishment, school, make_user, auth_headers):
    teacher_user = school["teacher_users"][0]
    school_class = school["classes"][0]
    payload = {"name": "6eme A", "type": "class", "class_id": school_class.id}

    refused = client.post(f"{API}/chat/rooms", json=payload, headers=auth_headers(teacher_user))
    assert refused.status_code == 403
    assert refused.json()["details"]["code"] == "not_member"

    pupil = make_user("apprenant", name="Pupil Account")
    parent = make_user("parent", name="Pupil Parent")
    student = Student(
        registration_number="LM-100",
        name="Pupil Account",
        user_id=pupil.id,
        class_id=school_class.id,
        establishment_id=establishment.id,
    )
    db.add(student)
    db.flush()
    db.add(ParentLink(parent_user_id=parent.id, student_id=student.id))
    school_class.head_teacher_user_id = teacher_user.id
    db.commit()

    created = client.post(f"{API}/chat/rooms", json=payload, headers=auth_headers(teacher_user))
    assert created.status_code == 201
    assert _roles(created.json()) == {teacher_user.id: "admin", pupil.id: "member"}

    parents_room = client.post(
        f"{API}/chat/rooms",
        json={"name": "Parents 6eme A", "type": "parents", "class_id": school_class.id},
        headers=auth_headers(teacher_user),
    )
    assert parents_room.status_code == 201
    assert _roles(parents_room.json()) == {teacher_user.id: "admin", parent.id: "member"}

    by_parent = client.post(f"{API}/chat/rooms", json=payload, headers=auth_headers(parent))
    assert by_parent.status_code == 403


def test_department_and_administration_rooms(client, db, establishment, school, make_user, auth_headers):
    head = make_user("enseignant", name="Department Head")
    department = Department(name="Sciences", head_user_id=head.id, establishment_id=establishment.id)
    db.add(department)
    db.flush()
    school["teachers"][0].department_id = department.id
    db.commit()

    payload = {"name": "Sciences", "type": "department", "department_id": department.id}
    outsider = client.post(f"{API}/chat/rooms", json=payload, headers=auth_headers(school["teacher_users"][1]))
    assert outsider.status_code == 403

    created = client.post(f"{API}/chat/rooms", json=payload, headers=auth_headers(school["teacher_users"][0]))
    assert created.status_code == 201
    assert _roles(created.json()) == {school["teacher_users"][0].id: "admin", head.id: "moderator"}

    missing = client.post(
        f"{API}/chat/rooms",
        json={"name": "Ghost", "type": "department", "department_id": 9999},
        headers=auth_headers(school["teacher_users"][0]),
    )
    assert missing.status_code == 404

    administration = {"name": "Direction", "type": "administration"}
    assert client.post(f"{API}/chat/rooms", json=administration, headers=auth_headers(head)).status_code == 403
    assert client.post(f"{API}/chat/rooms", json=administration, headers=auth_headers(make_user("principal"))).status_code == 201


def test_scoped_room_requires_its_target(client, room_members, auth_headers):
    response = client.post(
        f"{API}/chat/rooms",
        json={"name": "No class", "type": "class"},
        headers=auth_headers(room_members["owner"]),
    )
    assert response.status_code == 422


@pytest.fixture()
def foreign_class(db, other_establishment, make_user):
    """A class of the second establishment with one enrolled pupil account."""
    school_class = SchoolClass(name="5eme C", establishment_id=other_establishment.id)
    db.add(school_class)
    db.flush()
    pupil = make_user("apprenant", name="Foreign Pupil", establishment_id=other_establishment.id)
    db.add(
        Student(
            registration_number="CV-001",
            name="Foreign Pupil",
            user_id=pupil.id,
            class_id=school_class.id,
            establishment_id=other_establishment.id,
        )
    )
    db.commit()
    return school_class


def test_rooms_cannot_target_another_establishment(client, db, foreign_class, other_establishment, make_user, auth_headers):
    headers = auth_headers(make_user("admin", name="Local Admin"))
    class_room = client.post(
        f"{API}/chat/rooms",
        json={"name": "Intrusion", "type": "class", "class_id": foreign_class.id},
        headers=headers,
    )
    assert class_room.status_code == 404
    assert class_room.json()["message"] == f"Class with id {foreign_class.id} not found"

    department = Department(name="Lettres", establishment_id=other_establishment.id)
    db.add(department)
    db.commit()
    department_room = client.post(
        f"{API}/chat/rooms",
        json={"name": "Intrusion", "type": "department", "department_id": department.id},
        headers=headers,
    )
    assert department_room.status_code == 404
    assert client.get(f"{API}/chat/rooms", headers=headers).json() == []


def test_foreign_users_are_never_enrolled(client, room_members, other_establishment, make_user, auth_headers):
    foreigner = make_user("parent", name="Foreign Parent", establishment_id=other_establishment.id)
    owner = auth_headers(room_members["owner"])
    created = client.post(
        f"{API}/chat/rooms",
        json={"name": "Mixed", "type": "custom", "participant_ids": [room_members["alice"].id, foreigner.id]},
        headers=owner,
    )
    assert created.status_code == 201
    assert set(_roles(created.json())) == {room_members["owner"].id, room_members["alice"].id}

    added = client.post(
        f"{API}/chat/rooms/{created.json()['id']}/participants",
        json={"user_id": foreigner.id},
        headers=owner,
    )
    assert added.status_code == 404
    assert added.json()["message"] == f"User with id {foreigner.id} not found"
