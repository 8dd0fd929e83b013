from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from relay.application import create_app


@pytest.fixture
def client(fast_settings, gateway):
    app = create_app(fast_settings, gateway)
    with TestClient(app) as test_client:
        yield test_client


def test_health_reports_counts(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["activeRooms"] == 0
    assert body["activeBattles"] == 0


def test_initialize_get_and_find_battle(client):
    response = client.post(
        "/api/war-battle/initialize",
        json={"teamLeaderAddress": " 0xLeader ", "selectedCharacter": {"name": "Max Mayfield", "image": "/max.png"}},
    )
    assert response.status_code == 200
    body = response.json()
    battle_id = body["battleId"]
    assert body["battle"]["teamMembers"][0]["characterName"] == "Max Mayfield"
    assert body["battle"]["teamLeaderAddress"] == "0xLeader"

    fetched = client.get(f"/api/war-battle/{battle_id}").json()
    assert fetched["battle"]["id"] == battle_id
    assert len(fetched["battle"]["enemies"]) == 3

    found = client.post("/api/war-battle/find", json={"teamLeaderAddress": "0xleader"}).json()
    assert found["battleId"] == battle_id

    connect = client.post(f"/api/war-battle/{battle_id}/connect", json={"playerAddress": "0xLeader"})
    assert connect.status_code == 200
    assert connect.json()["wsPort"] == client.app.state.runtime.settings.ws_port


def test_missing_battle_is_404(client):
    assert client.get("/api/war-battle/war_missing").status_code == 404
    assert client.post("/api/war-battle/find", json={"teamLeaderAddress": "0xNobody"}).status_code == 404


def test_connect_by_outsider_is_forbidden(client):
    battle_id = client.post("/api/war-battle/initialize", json={"teamLeaderAddress": "0xLeader"}).json()["battleId"]

    response = client.post(f"/api/war-battle/{battle_id}/connect", json={"playerAddress": "0xStranger"})

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "NOT_IN_BATTLE"


def test_blank_leader_is_rejected(client):
    assert client.post("/api/war-battle/initialize", json={"teamLeaderAddress": "   "}).status_code == 422


def test_room_listing_and_invitations(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json(
            {
                "type": "CREATE_ROOM",
                "payload": {"id": "room-1", "code": "hawk01", "host": "0xHost", "name": "Hawkins Lab"},
            }
        )
        assert ws.receive_json()["type"] == "ROOM_CREATED"
        ws.send_json(
            {
                "type": "INVITE_PLAYER",
                "payload": {"roomCode": "HAWK01", "inviteAddress": "0xFriend", "inviterAddress": "0xHost"},
            }
        )
        assert ws.receive_json()["type"] == "INVITE_SENT"

        rooms = client.get("/api/rooms").json()
        assert rooms["totalRooms"] == 1
        assert rooms["rooms"][0]["code"] == "HAWK01"
        assert client.get("/api/rooms/hawk01").json()["room"]["name"] == "Hawkins Lab"

        invitations = client.get("/api/invitations/0xfriend").json()["invitations"]
        assert [i["roomCode"] for i in invitations] == ["HAWK01"]

    assert client.get("/api/rooms/NOPE").status_code == 404


def test_websocket_ping_and_invalid_json(client):
    with client.websocket_connect("/api/ws") as ws:
        ws.send_text('{"type": "PING"}')
        assert ws.receive_json()["type"] == "PONG"

        ws.send_text("not json")
        error = ws.receive_json()
        assert error == {"type": "ERROR", "payload": {"code": "INVALID_MESSAGE", "message": "Invalid message format"}}
