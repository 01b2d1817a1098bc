from sqlalchemy import select

from app.models.role import Role

from conftest import API


def test_permission_crud(client, make_user, auth_headers):
    headers = auth_headers(make_user("admin"))
    created = client.post(
        f"{API}/permissions/",
        json={"functionality": " grades ", "can_view": True},
        headers=headers,
    )
    assert created.status_code == 201
    permission = created.json()
    assert permission["functionality"] == "grades"
    assert permission["can_add"] is False

    duplicate = client.post(f"{API}/permissions/", json={"functionality": "grades"}, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["message"] == "Permission for this functionality already exists"

    updated = client.put(
        f"{API}/permissions/{permission['id']}",
        json={"can_add": True, "can_modify": True},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["can_add"] is True
    assert updated.json()["can_view"] is True

    listing = client.get(f"{API}/permissions/", headers=headers)
    assert [item["functionality"] for item in listing.json()] == ["grades"]

    assert client.delete(f"{API}/permissions/{permission['id']}", headers=headers).status_code == 200
    assert client.get(f"{API}/permissions/{permission['id']}", headers=headers).status_code == 404


def test_assigned_permission_cannot_be_deleted(client, db, establishment, make_user, auth_headers):
    headers = auth_headers(make_user("censeur"))
    permission_id = client.post(
        f"{API}/permissions/",
        json={"functionality": "attendance", "can_view": True},
        headers=headers,
    ).json()["id"]
    role_id = db.execute(
        select(Role.id).where(Role.name == "enseignant", Role.establishment_id == establishment.id)
    ).scalar_one()
    client.post(f"{API}/roles/{role_id}/permissions", json={"permission_id": permission_id}, headers=headers)

    refused = client.delete(f"{API}/permissions/{permission_id}", headers=headers)
    assert refused.status_code == 400
    assert refused.json()["message"] == "Permission cannot be deleted as it is assigned to 1 role(s)"

    roles = client.get(f"{API}/permissions/{permission_id}/roles", headers=headers)
    assert [role["name"] for role in roles.json()] == ["enseignant"]


def test_parent_cannot_create_permissions(client, make_user, auth_headers):
    headers = auth_headers(make_user("parent"))
    response = client.post(f"{API}/permissions/", json={"functionality": "payments"}, headers=headers)
    assert response.status_code == 403
