from __future__ import annotations

import pytest
from flask import Flask

from biometric_attendance.attendance.controller import register as register_attendance
from biometric_attendance.container import build_services
from biometric_attendance.identities.controller import register as register_identities


class _Settings:
    TIMEZONE = ""
    ORGANIZATION_NAME = "MCA Department"


@pytest.fixture
def container(identities, ledger):
    return build_services(identities, ledger, settings=_Settings())


@pytest.fixture
def client(container):
    app = Flask(__name__)
    app.secret_key = "test-secret"
    register_identities(app, container)
    register_attendance(app, container)
    return app.test_client()


def _enroll(client, vector, **overrides):
    body = {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "9876500001",
        "group": "MCA",
        "embedding": vector(0, 1.0),
    }
    body.update(overrides)
    return client.post("/api/identities", json=body)


def test_enroll_then_face_login_and_logout(client, vector):
    enrolled = _enroll(client, vector)
    assert enrolled.status_code == 201
    identity_id = enrolled.get_json()["identity"]["identity_id"]

    login = client.post("/api/attendance/face", json={"embedding": vector(0, 1.1), "location": "Lab 2"})
    assert login.status_code == 200
    body = login.get_json()
    assert body["outcome"] == "logged_in"
    assert body["identity"]["identity_id"] == identity_id
    assert body["attendance"]["location"] == "Lab 2"

    logout = client.post("/api/attendance/face", json={"embedding": vector(0, 1.1)})
    assert logout.get_json()["outcome"] == "logged_out"

    done = client.post("/api/attendance/face", json={"embedding": vector(0, 1.1)})
    assert done.status_code == 400
    assert done.get_json()["outcome"] == "already_completed"


def test_face_no_match_is_404(client, vector):
    _enroll(client, vector)
    resp = client.post("/api/attendance/face", json={"embedding": vector(3, 1.0)})
    assert resp.status_code == 404
    assert resp.get_json()["outcome"] == "no_match"


def test_wrong_embedding_length_is_400(client, vector):
    _enroll(client, vector)
    resp = client.post("/api/attendance/face", json={"embedding": [0.1] * 10})
    assert resp.status_code == 400
    assert "exactly 128" in resp.get_json()["message"]


def test_image_without_extractor_is_400(client):
    resp = client.post("/api/attendance/face", json={"image": "data:image/jpeg;base64,AAAA"})
    assert resp.status_code == 400


def test_bad_action_is_400(client, vector):
    resp = client.post("/api/attendance/face", json={"embedding": vector(0, 1.0), "action": "teleport"})
    assert resp.status_code == 400


def test_fingerprint_flow_with_challenge(client, identities, vector, authenticator):
    identity_id = _enroll(client, vector).get_json()["identity"]["identity_id"]
    registered = client.post(
        f"/api/identities/{identity_id}/fingerprint",
        json={"credentialId": authenticator.credential_id, "publicKey": authenticator.public_key},
    )
    assert registered.status_code == 201

    challenge = client.get("/api/attendance/fingerprint/challenge").get_json()["challenge"]
    a = authenticator.assertion(counter=1, challenge=challenge)
    payload = {
        "credentialId": a.credential_id,
        "authenticatorData": a.authenticator_data,
        "clientDataJSON": a.client_data_json,
        "signature": a.signature,
    }
    ok = client.post("/api/attendance/fingerprint", json=payload)
    assert ok.status_code == 200
    assert ok.get_json()["attendance"]["method"] == "fingerprint"

    replay = client.post("/api/attendance/fingerprint", json=payload)
    assert replay.status_code == 401
    assert replay.get_json()["outcome"] == "replay_detected"


def test_incomplete_fingerprint_payload_is_400(client):
    resp = client.post("/api/attendance/fingerprint", json={"credentialId": "abc"})
    assert resp.status_code == 400


def test_status_and_history(client, vector):
    identity_id = _enroll(client, vector).get_json()["identity"]["identity_id"]

    assert client.get(f"/api/attendance/status/{identity_id}").get_json()["state"] == "no_entry"
    client.post("/api/attendance/face", json={"embedding": vector(0, 1.0)})
    assert client.get(f"/api/attendance/status/{identity_id}").get_json()["can_logout"] is True

    history = client.get(f"/api/identities/{identity_id}/history").get_json()
    assert history["count"] == 1
    assert client.get("/api/attendance/status/MCA-MCA-NOPE0000").status_code == 404


def test_absentees_and_stats(client, vector):
    _enroll(client, vector)
    absentees = client.get("/api/attendance/absentees?date=2099-01-01").get_json()
    assert absentees["count"] == 1
    assert absentees["absentees"][0]["whatsapp_link"].startswith("https://wa.me/+919876500001")

    stats = client.get("/api/attendance/stats?date=2099-01-01").get_json()
    assert stats["total_active"] == 1
    assert len(stats["trend"]) == 7

    assert client.get("/api/attendance/stats?date=01-01-2099").status_code == 400


def test_deactivate(client, vector):
    identity_id = _enroll(client, vector).get_json()["identity"]["identity_id"]
    assert client.post(f"/api/identities/{identity_id}/deactivate").status_code == 200

    resp = client.post("/api/attendance/face", json={"embedding": vector(0, 1.0)})
    assert resp.get_json()["outcome"] == "no_match"


def test_infrastructure_failure_is_500(client, identities, monkeypatch):
    def broken():
        raise RuntimeError("db down")

    monkeypatch.setattr(identities, "list_face_templates", broken)
    resp = client.post("/api/attendance/face", json={"embedding": [0.0] * 128})
    assert resp.status_code == 500
    assert resp.get_json()["message"] == "Internal server error"


def test_list_and_get_identities(client, vector):
    asha_id = _enroll(client, vector).get_json()["identity"]["identity_id"]
    _enroll(
        client,
        vector,
        name="Ravi Kumar",
        email="ravi@example.com",
        phone="9876500002",
        group="MBA",
        embedding=vector(1, 1.0),
    )

    everyone = client.get("/api/identities?limit=1&page=2").get_json()
    assert everyone["pagination"] == {"total": 2, "page": 2, "limit": 1, "total_pages": 2}
    assert len(everyone["identities"]) == 1

    mba = client.get("/api/identities?group=MBA").get_json()["identities"]
    assert [i["name"] for i in mba] == ["Ravi Kumar"]
    assert client.get("/api/identities?search=asha").get_json()["identities"][0]["identity_id"] == asha_id
    assert client.get("/api/identities?status=sleeping").status_code == 400
    assert client.get("/api/identities?page=x").status_code == 400

    detail = client.get(f"/api/identities/{asha_id}").get_json()
    assert detail["identity"]["methods"] == ["face"]
    assert detail["stats"]["total_days"] == 1
    assert client.get("/api/identities/MCA-MCA-NOPE0000").status_code == 404


def test_update_identity(client, vector):
    asha_id = _enroll(client, vector).get_json()["identity"]["identity_id"]
    _enroll(client, vector, name="Ravi Kumar", email="ravi@example.com", phone="9876500002")

    ok = client.put(f"/api/identities/{asha_id}", json={"name": "Asha R", "group": "MBA"})
    assert ok.status_code == 200
    assert ok.get_json()["identity"]["group"] == "MBA"

    taken = client.put(f"/api/identities/{asha_id}", json={"email": "ravi@example.com"})
    assert taken.status_code == 400
    assert taken.get_json()["message"] == "Email already in use by another identity"
    assert client.put(f"/api/identities/{asha_id}", json={}).status_code == 400
    assert client.put("/api/identities/MCA-MCA-NOPE0000", json={"name": "Nobody"}).status_code == 404


def test_face_reenrollment(client, vector):
    identity_id = _enroll(client, vector).get_json()["identity"]["identity_id"]

    assert client.put(f"/api/identities/{identity_id}/face", json={"embedding": vector(4, 1.0)}).status_code == 200
    assert client.put(f"/api/identities/{identity_id}/face", json={}).status_code == 400

    resp = client.post("/api/attendance/face", json={"embedding": vector(4, 1.0)})
    assert resp.get_json()["identity"]["identity_id"] == identity_id


def test_reactivate(client, vector):
    identity_id = _enroll(client, vector).get_json()["identity"]["identity_id"]
    client.post(f"/api/identities/{identity_id}/deactivate")

    assert client.post(f"/api/identities/{identity_id}/activate").status_code == 200
    assert client.post("/api/identities/MCA-MCA-NOPE0000/activate").status_code == 404
    resp = client.post("/api/attendance/face", json={"embedding": vector(0, 1.0)})
    assert resp.get_json()["outcome"] == "logged_in"


def test_fingerprint_status_check(client, vector, authenticator, authenticator_factory):
    identity_id = _enroll(
        client,
        vector,
        fingerprint={"credentialId": authenticator.credential_id, "publicKey": authenticator.public_key},
    ).get_json()["identity"]["identity_id"]

    def payload(a):
        return {
            "credentialId": a.credential_id,
            "authenticatorData": a.authenticator_data,
            "clientDataJSON": a.client_data_json,
            "signature": a.signature,
        }

    challenge = client.get("/api/attendance/fingerprint/challenge").get_json()["challenge"]
    status = client.post(
        "/api/attendance/fingerprint/status", json=payload(authenticator.assertion(counter=1, challenge=challenge))
    )
    assert status.status_code == 200
    assert status.get_json()["identity"]["identity_id"] == identity_id
    assert status.get_json()["state"] == "no_entry"

    # The status check leaves the challenge in place for the mark that follows.
    mark = client.post(
        "/api/attendance/fingerprint", json=payload(authenticator.assertion(counter=2, challenge=challenge))
    )
    assert mark.get_json()["outcome"] == "logged_in"

    stranger = client.post(
        "/api/attendance/fingerprint/status", json=payload(authenticator_factory().assertion(counter=1))
    )
    assert stranger.status_code == 404


def test_calendar_and_identity_stats(client, vector):
    identity_id = _enroll(client, vector).get_json()["identity"]["identity_id"]
    client.post("/api/attendance/face", json={"embedding": vector(0, 1.0)})

    calendar = client.get(f"/api/identities/{identity_id}/calendar").get_json()["calendar"]
    assert len(calendar) == 1
    assert calendar[0]["status"] == "present"
    assert calendar[0]["attendance"]["method"] == "face"

    past = client.get(f"/api/identities/{identity_id}/calendar?start=2026-01-01&end=2026-01-02").get_json()
    assert past["calendar"] == [{"date": "2026-01-01", "status": "none"}, {"date": "2026-01-02", "status": "none"}]
    assert client.get(f"/api/identities/{identity_id}/calendar?start=2026-01-02&end=2026-01-01").status_code == 400

    stats = client.get(f"/api/identities/{identity_id}/stats").get_json()
    assert (stats["total_days"], stats["present_days"], stats["absent_days"], stats["percentage"]) == (1, 1, 0, 100.0)
    assert client.get("/api/identities/MCA-MCA-NOPE0000/stats").status_code == 404
