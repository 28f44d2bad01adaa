import pytest

from app.config import settings
from conftest import make_blink_proof


async def register(client, headers, user_id, descriptor_data, **extra):
    payload = {"user_id": user_id, "descriptor_data": descriptor_data, "liveness_proof": make_blink_proof()}
    payload.update(extra)
    return await client.post("/api/biometry/register", json=payload, headers=headers)


async def verify(client, headers, user_id, descriptor_data, **extra):
    payload = {"user_id": user_id, "descriptor_data": descriptor_data, "liveness_proof": make_blink_proof()}
    payload.update(extra)
    return await client.post("/api/biometry/verify", json=payload, headers=headers)


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_requires_bearer_token(client, users, descriptor_data):
    response = await client.post("/api/biometry/verify", json={"user_id": 1, "descriptor_data": descriptor_data})
    assert response.status_code == 401

    response = await client.get("/api/biometry/status/1", headers={"Authorization": "Bearer invalide"})
    assert response.status_code == 401


async def test_register_then_verify(client, users, auth_headers, descriptor_data):
    alice = users["alice"]

    response = await register(client, auth_headers["alice"], alice.id, descriptor_data)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["biometric_id"] > 0

    response = await verify(client, auth_headers["alice"], alice.id, descriptor_data)
    assert response.status_code == 200
    outcome = response.json()
    assert outcome["verified"] is True
    assert outcome["face_match_score"] == 1.0
    assert outcome["method"] == "multimodal-fusion-v1"
    assert "reasons" in outcome and outcome["reasons"] is None


async def test_register_without_liveness_is_bad_request(client, users, auth_headers, descriptor_data):
    response = await register(client, auth_headers["alice"], users["alice"].id, descriptor_data, liveness_proof=None)
    assert response.status_code == 400
    assert "vie" in response.json()["detail"]


async def test_invalid_descriptor_is_bad_request(client, users, auth_headers):
    response = await register(client, auth_headers["alice"], users["alice"].id, "pas-un-descripteur")
    assert response.status_code == 400


async def test_verify_unregistered_user_is_not_found(client, users, auth_headers, descriptor_data):
    response = await verify(client, auth_headers["bob"], users["bob"].id, descriptor_data)
    assert response.status_code == 404


async def test_users_cannot_act_on_others(client, users, auth_headers, descriptor_data):
    response = await register(client, auth_headers["bob"], users["alice"].id, descriptor_data)
    assert response.status_code == 403

    response = await client.get(f"/api/biometry/status/{users['alice'].id}", headers=auth_headers["bob"])
    assert response.status_code == 403

    # Un administrateur peut agir pour n'importe quel utilisateur
    response = await register(client, auth_headers["admin"], users["alice"].id, descriptor_data)
    assert response.status_code == 200


async def test_lockout_returns_423(client, users, auth_headers, descriptor_data, unrelated_descriptor_data):
    alice = users["alice"]
    await register(client, auth_headers["alice"], alice.id, descriptor_data)

    for _ in range(settings.LOCKOUT_FAILURE_THRESHOLD):
        response = await verify(client, auth_headers["alice"], alice.id, unrelated_descriptor_data)
        assert response.status_code == 200
        assert response.json()["verified"] is False

    response = await verify(client, auth_headers["alice"], alice.id, descriptor_data)
    assert response.status_code == 423

    status = (await client.get(f"/api/biometry/status/{alice.id}", headers=auth_headers["alice"])).json()
    assert status["registered"] is True
    assert status["locked"] is True
    assert status["lock_until"] is not None


async def test_liveness_endpoint(client, users, auth_headers):
    response = await client.post(
        "/api/biometry/liveness", json={"liveness_proof": make_blink_proof()}, headers=auth_headers["alice"]
    )
    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is True
    assert body["method"] == "blink-detection-v2"

    response = await client.post("/api/biometry/liveness", json={}, headers=auth_headers["alice"])
    assert response.status_code == 200
    assert response.json()["method"] == "none"


async def test_remove_and_status(client, users, auth_headers, descriptor_data):
    alice = users["alice"]
    await register(client, auth_headers["alice"], alice.id, descriptor_data)

    response = await client.delete(f"/api/biometry/{alice.id}", headers=auth_headers["alice"])
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Données biométriques supprimées avec succès",
        "deactivated": 1,
    }

    status = (await client.get(f"/api/biometry/status/{alice.id}", headers=auth_headers["alice"])).json()
    assert status["registered"] is False

    response = await client.delete(f"/api/biometry/{alice.id}", headers=auth_headers["alice"])
    assert response.json()["deactivated"] == 0


@pytest.mark.parametrize("user,expected", [("alice", 403), ("admin", 200)])
async def test_diagnostics_is_admin_only(client, users, auth_headers, user, expected):
    response = await client.get("/api/biometry/diagnostics", headers=auth_headers[user])
    assert response.status_code == expected
