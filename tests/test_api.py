from fastapi.testclient import TestClient

from conftest import OWNER_PASSWORD, profile
from regdesk import services
from regdesk.api import app


def _login(client, identifier="owner", password=OWNER_PASSWORD):
    return client.post("/session/login", json={"identifier": identifier, "password": password})


def test_login_and_read_session(client, owner_id):
    resp = _login(client)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "value": {"user_id": owner_id, "role": "OWNER"}}

    resp = client.get("/session")
    assert resp.json()["value"]["role"] == "OWNER"

    resp = client.delete("/session")
    assert resp.json() == {"ok": True, "value": None}
    assert client.get("/session").json() == {"ok": True, "value": None}


def test_login_failure_is_a_tagged_error(client, owner_id):
    resp = _login(client, password="Wr0ng!Pw")
    assert resp.status_code == 401
    body = resp.json()
    assert body["ok"] is False
    assert body["error"]["kind"] == "InvalidCredential"

    resp = _login(client, identifier="ghost")
    assert resp.status_code == 404
    assert resp.json()["error"]["kind"] == "NotFound"


def test_requests_without_session_are_rejected(client, owner_id):
    resp = client.get("/users")
    assert resp.status_code == 401
    assert resp.json()["error"] == {
        "kind": "NoActiveSession",
        "message": "Not logged in",
        "field": None,
    }


def test_user_management_flow(client, owner_id):
    _login(client)
    payload = profile("api-user", password="Ap1User!")
    resp = client.post("/users", json=payload)
    assert resp.status_code == 200
    new_id = resp.json()["value"]

    users = client.get("/users").json()["value"]
    created = next(u for u in users if u["id"] == new_id)
    assert created["role"] == "OPERATOR"
    assert "password_hash" not in created and "password" not in created

    assert client.post(f"/users/{new_id}/promote").json()["ok"] is True
    assert client.post(f"/users/{new_id}/demote").json()["ok"] is True
    assert client.delete(f"/users/{new_id}").json()["ok"] is True
    assert new_id not in [u["id"] for u in client.get("/users").json()["value"]]


def test_self_delete_is_forbidden(client, owner_id):
    _login(client)
    resp = client.delete(f"/users/{owner_id}")
    assert resp.status_code == 403
    assert resp.json()["error"]["kind"] == "PermissionDenied"


def test_validation_error_names_field(client, owner_id):
    _login(client)
    resp = client.post("/participants", json=profile("bad-phone", phone="123"))
    assert resp.status_code == 422
    assert resp.json()["error"]["field"] == "phone"

    resp = client.post("/session/login", json={"identifier": "owner"})
    assert resp.status_code == 422
    assert resp.json()["error"] == {
        "kind": "ValidationError",
        "message": resp.json()["error"]["message"],
        "field": "password",
    }


def test_profile_and_participant_routes(client, owner_id):
    _login(client)
    me = client.get("/users/me").json()["value"]
    assert me["name"] == "owner"

    assert client.patch("/users/me", json={}).json()["value"] == 0
    assert client.patch("/users/me", json={"address": "9 New Road"}).json()["value"] == 1
    trail = client.get(f"/users/{owner_id}/audit").json()["value"]
    assert trail["modified_by"] == [owner_id]

    participant_id = client.post("/participants", json=profile("guest")).json()["value"]
    resp = client.patch(f"/participants/{participant_id}", json={"blood_group": "b-"})
    assert resp.json()["value"] == 1
    listed = client.get("/participants").json()["value"]
    assert listed[0]["blood_group"] == "B-"
    assert len(client.get(f"/participants/{participant_id}/audit").json()["value"]["modified_at"]) == 1

    assert client.delete(f"/participants/{participant_id}").json()["ok"] is True
    assert client.get("/participants").json()["value"] == []
    assert client.get("/scores").json() == {"ok": True, "value": []}


def test_password_change_route(client, owner_id):
    _login(client)
    resp = client.post(
        "/users/me/password",
        json={"old_password": OWNER_PASSWORD, "new_password": "short"},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["field"] == "new_password"

    resp = client.post(
        "/users/me/password",
        json={"old_password": OWNER_PASSWORD, "new_password": "An0ther!Pw"},
    )
    assert resp.json() == {"ok": True, "value": None}
    assert _login(client, password="An0ther!Pw").status_code == 200


def test_shutdown_erases_session(session_local, owner_id):
    with TestClient(app) as client:
        _login(client)
        assert services.current_session() is not None
    assert services.current_session() is None
