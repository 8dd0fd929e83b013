from __future__ import annotations

import asyncio

ROOM = {
    "id": "room-1",
    "code": "HAWK01",
    "name": "Hawkins Lab",
    "host": "0xHost",
    "maxPlayers": 4,
    "players": [{"address": "0xHost", "displayName": "Hopper"}],
}


async def create_room_with_guest(runtime, make_ws):
    host_ws, guest_ws = make_ws("host"), make_ws("guest")
    await runtime.dispatch(host_ws, {"type": "CREATE_ROOM", "payload": dict(ROOM)})
    await runtime.dispatch(
        guest_ws,
        {"type": "JOIN_ROOM", "payload": {"roomCode": "HAWK01", "player": {"address": "0xGuest", "displayName": "Joyce"}}},
    )
    return host_ws, guest_ws


async def test_create_and_join_broadcasts(runtime, make_ws):
    host_ws, guest_ws = await create_room_with_guest(runtime, make_ws)

    assert host_ws.types() == ["ROOM_CREATED", "PLAYER_JOINED"]
    assert guest_ws.types() == ["ROOM_JOINED", "PLAYER_JOINED"]
    assert [p["address"] for p in host_ws.last("PLAYER_JOINED")["players"]] == ["0xHost", "0xGuest"]


async def test_create_room_accepts_inline_payload(runtime, make_ws):
    ws = make_ws()

    await runtime.dispatch(ws, {"type": "CREATE_ROOM", **ROOM})

    assert ws.last("ROOM_CREATED")["room"]["code"] == "HAWK01"


async def test_reconnect_does_not_announce_a_new_player(runtime, make_ws):
    host_ws, guest_ws = await create_room_with_guest(runtime, make_ws)
    again = make_ws("guest-again")

    await runtime.dispatch(
        again,
        {"type": "JOIN_ROOM", "payload": {"roomCode": "HAWK01", "player": {"address": "0xguest"}}},
    )

    assert again.types() == ["ROOM_JOINED"]
    assert host_ws.types().count("PLAYER_JOINED") == 1
    assert host_ws.types()[-1] == "PLAYER_RECONNECTED"
    assert len(runtime.rooms.require("HAWK01").players) == 2


async def test_grace_expiry_removes_player_and_moves_host(runtime, make_ws):
    host_ws, guest_ws = await create_room_with_guest(runtime, make_ws)

    await host_ws.close()
    await runtime._cleanup_connection(host_ws, reason="test")
    assert runtime._has_timer("grace:HAWK01:0xhost")

    await asyncio.sleep(0.1)

    room = runtime.rooms.require("HAWK01")
    assert [p.address for p in room.players] == ["0xGuest"]
    assert room.host == "0xGuest"
    left = guest_ws.last("PLAYER_LEFT")
    assert left["newHost"] == "0xGuest"
    assert left["player"]["address"] == "0xHost"
    assert runtime._ws_stats["graceRemovals"] == 1


async def test_reconnect_within_grace_keeps_the_seat(runtime, make_ws):
    host_ws, guest_ws = await create_room_with_guest(runtime, make_ws)

    await guest_ws.close()
    await runtime._cleanup_connection(guest_ws, reason="test")
    back = make_ws("guest-back")
    await runtime.dispatch(back, {"type": "REJOIN_ROOM", "payload": {"roomCode": "HAWK01", "playerAddress": "0xGuest"}})

    assert not runtime._has_timer("grace:HAWK01:0xguest")
    await asyncio.sleep(0.1)

    assert len(runtime.rooms.require("HAWK01").players) == 2
    assert back.types() == ["ROOM_REJOINED"]
    assert host_ws.types()[-1] == "PLAYER_REJOINED"


async def test_last_player_leaving_deletes_room(runtime, make_ws):
    ws = make_ws()
    await runtime.dispatch(ws, {"type": "CREATE_ROOM", "payload": dict(ROOM)})

    await runtime.dispatch(ws, {"type": "LEAVE_ROOM", "payload": {"roomCode": "HAWK01", "playerAddress": "0xHost"}})

    assert ws.last("ROOM_LEFT")["roomCode"] == "HAWK01"
    assert runtime.rooms.get("HAWK01") is None


async def test_rejoin_of_missing_room_reports_error(runtime, make_ws):
    ws = make_ws()

    await runtime.dispatch(ws, {"type": "REJOIN_ROOM", "payload": {"roomCode": "GONE", "playerAddress": "0xA"}})

    assert ws.last("ERROR") == {"code": "ROOM_NOT_FOUND", "message": "Room no longer exists"}


async def test_start_game_requires_ready_players(runtime, make_ws):
    host_ws, guest_ws = await create_room_with_guest(runtime, make_ws)

    await runtime.dispatch(host_ws, {"type": "START_GAME", "payload": {"roomCode": "HAWK01", "hostAddress": "0xHost"}})
    assert host_ws.last("ERROR")["code"] == "NOT_ALL_READY"

    await runtime.dispatch(guest_ws, {"type": "TOGGLE_READY", "payload": {"roomCode": "HAWK01", "playerAddress": "0xGuest"}})
    await runtime.dispatch(host_ws, {"type": "START_GAME", "payload": {"roomCode": "HAWK01", "hostAddress": "0xHost"}})

    assert guest_ws.last("GAME_STARTING")["gameMode"] == "multiplayer"
    assert runtime.rooms.get("HAWK01") is not None


async def test_invitation_reaches_pending_list(runtime, make_ws):
    host_ws, _ = await create_room_with_guest(runtime, make_ws)

    await runtime.dispatch(
        host_ws,
        {"type": "INVITE_PLAYER", "payload": {"roomCode": "HAWK01", "inviteAddress": "0xFriend", "inviterAddress": "0xHost"}},
    )

    sent = host_ws.last("INVITE_SENT")
    assert sent["invitation"]["roomName"] == "Hawkins Lab"
    assert [i.invite_address for i in runtime.invitations.pending_for("0xfriend")] == ["0xFriend"]


async def test_unknown_type_and_missing_fields(runtime, make_ws):
    ws = make_ws()

    await runtime.dispatch(ws, {"type": "TELEPORT", "payload": {}})
    await runtime.dispatch(ws, {"type": "LEAVE_ROOM", "payload": {"roomCode": "HAWK01"}})
    await runtime.dispatch(ws, {"type": "WAR_VOTE", "payload": {}})

    assert [m["payload"]["code"] for m in ws.sent] == ["UNKNOWN_MESSAGE_TYPE", "INVALID_MESSAGE", "INVALID_MESSAGE"]
    assert ws.types() == ["ERROR", "ERROR", "WAR_ERROR"]


async def test_ping_gets_pong(runtime, make_ws):
    ws = make_ws()

    await runtime.dispatch(ws, {"type": "PING"})

    assert ws.last("PONG")["message"] == "Server is alive"


async def test_character_selection_round_trip(runtime, make_ws):
    a, b = make_ws("a"), make_ws("b")
    for ws, address in ((a, "0xA"), (b, "0xB")):
        await runtime.dispatch(
            ws,
            {"type": "JOIN_CHARACTER_SELECTION", "payload": {"roomCode": "HAWK01", "playerAddress": address}},
        )

    await runtime.dispatch(
        a,
        {"type": "CHARACTER_SELECTED", "payload": {"roomCode": "HAWK01", "playerAddress": "0xA", "character": {"name": "Eleven"}, "ready": True}},
    )
    await runtime.dispatch(
        b,
        {"type": "CHARACTER_SELECTED", "payload": {"roomCode": "HAWK01", "playerAddress": "0xB", "character": {"name": "Max Mayfield"}, "ready": True}},
    )

    final = a.last("ALL_PLAYERS_READY")["characterSelections"]
    assert final == {"0xA": {"name": "Eleven"}, "0xB": {"name": "Max Mayfield"}}
    await asyncio.sleep(0.05)
    assert runtime.selections.get("HAWK01") is None


async def test_stale_socket_close_does_not_cancel_grace_in_new_room(runtime, make_ws):
    host_a, host_b = make_ws("host-a"), make_ws("host-b")
    first, second = make_ws("first"), make_ws("second")
    await runtime.dispatch(host_a, {"type": "CREATE_ROOM", "payload": dict(ROOM, id="room-a", code="ROOMA", host="0xHostA")})
    await runtime.dispatch(host_b, {"type": "CREATE_ROOM", "payload": dict(ROOM, id="room-b", code="ROOMB", host="0xHostB")})
    join_a = {"type": "JOIN_ROOM", "payload": {"roomCode": "ROOMA", "player": {"address": "0xP"}}}
    await runtime.dispatch(first, join_a)
    await runtime.dispatch(second, join_a)
    await runtime.dispatch(second, {"type": "JOIN_ROOM", "payload": {"roomCode": "ROOMB", "player": {"address": "0xP"}}})

    await second.close()
    await runtime._cleanup_connection(second, reason="test")
    await first.close()
    await runtime._cleanup_connection(first, reason="test")

    assert runtime._has_timer("grace:ROOMB:0xp")
    assert not runtime._has_timer("grace:ROOMA:0xp")
    await asyncio.sleep(0.1)

    assert [p.address for p in runtime.rooms.require("ROOMB").players] == ["0xHostB"]
    assert host_b.last("PLAYER_LEFT")["player"]["address"] == "0xP"
