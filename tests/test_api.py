from sqlalchemy import select

from scrutin.models import Vote
from scrutin.services.audit_service import audit_service
from tests.conftest import BrokenSession
from tests.test_voting_session_service import BLINKS


async def walk_to_vote(client, clock, headers):
    """Enrôlement, vérification et clignements via l'API (mode push)"""
    response = await client.post("/api/session/start", headers=headers)
    assert response.json()["step"] == "enroll"

    for pose in ["frontal", "left", "right"]:
        response = await client.post(
            "/api/session/enroll/capture", headers=headers,
            json={"pose": pose, "image_base64": "me"},
        )
        assert response.status_code == 200
    assert response.json()["step"] == "verify"

    await client.post("/api/session/verify/start", headers=headers)
    response = await client.post("/api/session/verify/frame", headers=headers, json={"image_base64": "me"})
    assert response.json()["session"]["step"] == "liveness"

    await client.post("/api/session/liveness/start", headers=headers)
    for label in BLINKS:
        clock.advance(0.1)
        response = await client.post("/api/session/liveness/frame", headers=headers, json={"image_base64": label})
    return response


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_register_and_login(client):
    response = await client.post("/api/auth/register", json={
        "email": "nouvel@example.com", "password": "motdepasse", "full_name": "Nouvel Électeur",
    })
    assert response.status_code == 200
    assert response.json()["role"] == "voter"

    response = await client.post("/api/auth/token", data={"username": "nouvel@example.com", "password": "motdepasse"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.json()["email"] == "nouvel@example.com"


async def test_session_requires_token(client):
    response = await client.post("/api/session/start")
    assert response.status_code == 401


async def test_full_voting_flow(client, clock, auth_headers, election):
    response = await walk_to_vote(client, clock, auth_headers)
    body = response.json()
    assert body["settle_ms"] == 0
    assert body["session"]["step"] == "vote"
    assert body["session"]["face_verified"] and body["session"]["liveness_verified"]

    response = await client.get("/api/elections/", headers=auth_headers)
    listed = response.json()
    assert listed[0]["is_open"] and not listed[0]["has_voted"]
    assert [o["id"] for o in listed[0]["options"]] == ["party1", "party2"]

    response = await client.post(
        "/api/session/vote", headers=auth_headers,
        json={"election_id": election.id, "option_id": "party1"},
    )
    assert response.status_code == 200
    vote = response.json()
    assert vote["face_verified"] and vote["blink_verified"]
    assert vote["session"]["step"] == "done"

    response = await client.get("/api/elections/", headers=auth_headers)
    assert response.json()[0]["has_voted"]


async def test_vote_before_liveness_is_conflict(client, auth_headers, election):
    await client.post("/api/session/start", headers=auth_headers)
    response = await client.post(
        "/api/session/vote", headers=auth_headers,
        json={"election_id": election.id, "option_id": "party1"},
    )
    assert response.status_code == 409


async def test_duplicate_vote_is_reported(client, clock, auth_headers, election):
    await walk_to_vote(client, clock, auth_headers)
    ballot = {"election_id": election.id, "option_id": "party1"}
    await client.post("/api/session/vote", headers=auth_headers, json=ballot)

    # Nouveau passage complet (vérification et clignements) puis second vote
    await client.post("/api/session/again", headers=auth_headers)
    await client.post("/api/session/verify/start", headers=auth_headers)
    await client.post("/api/session/verify/frame", headers=auth_headers, json={"image_base64": "me"})
    await client.post("/api/session/liveness/start", headers=auth_headers)
    for label in BLINKS:
        clock.advance(0.1)
        await client.post("/api/session/liveness/frame", headers=auth_headers, json={"image_base64": label})

    response = await client.post("/api/session/vote", headers=auth_headers, json=ballot)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "already_voted"


async def test_vote_recorded_when_audit_storage_fails(client, clock, auth_headers, election, db, monkeypatch):
    await walk_to_vote(client, clock, auth_headers)
    monkeypatch.setattr(audit_service, "session_maker", BrokenSession)

    response = await client.post(
        "/api/session/vote", headers=auth_headers,
        json={"election_id": election.id, "option_id": "party2"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["vote_id"] is not None
    assert body["selected_option"] == "party2"
    assert body["session"]["step"] == "done"

    votes = (await db.execute(select(Vote).where(Vote.election_id == election.id))).scalars().all()
    assert [vote.id for vote in votes] == [body["vote_id"]]


async def test_unknown_option_is_bad_request(client, clock, auth_headers, election):
    await walk_to_vote(client, clock, auth_headers)
    response = await client.post(
        "/api/session/vote", headers=auth_headers,
        json={"election_id": election.id, "option_id": "party9"},
    )
    assert response.status_code == 400


async def test_capture_without_face(client, auth_headers):
    await client.post("/api/session/start", headers=auth_headers)
    response = await client.post(
        "/api/session/enroll/capture", headers=auth_headers,
        json={"pose": "left", "image_base64": "empty"},
    )
    assert response.status_code == 422
    assert response.json()["detail"]["pose"] == "left"


async def test_unreadable_frame(client, auth_headers):
    await client.post("/api/session/start", headers=auth_headers)
    response = await client.post(
        "/api/session/enroll/capture", headers=auth_headers,
        json={"pose": "frontal", "image_base64": "%%%"},
    )
    assert response.status_code == 400


async def test_cancel_goes_back(client, auth_headers):
    await client.post("/api/session/start", headers=auth_headers)
    response = await client.post("/api/session/cancel", headers=auth_headers)
    assert response.json()["step"] == "auth"

    response = await client.post("/api/session/cancel", headers=auth_headers)
    assert response.status_code == 409


async def test_liveness_remaining_time(client, clock, auth_headers):
    await client.post("/api/session/start", headers=auth_headers)
    for pose in ["frontal", "left", "right"]:
        await client.post("/api/session/enroll/capture", headers=auth_headers, json={"pose": pose, "image_base64": "me"})
    await client.post("/api/session/verify/start", headers=auth_headers)
    await client.post("/api/session/verify/frame", headers=auth_headers, json={"image_base64": "me"})
    await client.post("/api/session/liveness/start", headers=auth_headers)

    clock.advance(10)
    response = await client.get("/api/session", headers=auth_headers)
    assert response.json()["liveness"]["remaining_ms"] == 20000

    clock.advance(25)
    response = await client.get("/api/session", headers=auth_headers)
    body = response.json()
    assert body["liveness"]["status"] == "failed"
    assert body["notice"]["level"] == "error"


async def test_camera_busy_is_locked(client, camera, auth_headers):
    await client.post("/api/session/start", headers=auth_headers)
    for pose in ["frontal", "left", "right"]:
        await client.post("/api/session/enroll/capture", headers=auth_headers, json={"pose": pose, "image_base64": "me"})

    async with camera.acquire():
        response = await client.post("/api/session/verify/live", headers=auth_headers)
    assert response.status_code == 423


async def test_sign_out(client, auth_headers):
    await client.post("/api/session/start", headers=auth_headers)
    response = await client.post("/api/session/sign-out", headers=auth_headers)
    assert response.json()["success"]

    response = await client.get("/api/session", headers=auth_headers)
    assert response.json()["step"] == "auth"
