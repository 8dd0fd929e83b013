from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import WebSocket

from . import runtime_room_flow as room_flow
from . import runtime_selection_flow as selection_flow
from . import runtime_war_flow as war_flow
from .runtime_errors import ProtocolError
from .runtime_utils import envelope, iso_now

if TYPE_CHECKING:
    from .runtime import RelayRuntime


async def handle_message(
    runtime: "RelayRuntime",
    websocket: WebSocket,
    message_type: str,
    payload: dict[str, Any],
) -> None:
    if message_type == "PING":
        runtime._increment_stat("pingReceived")
        await runtime._send_safe(
            websocket,
            envelope("PONG", message="Server is alive", timestamp=iso_now()),
        )
        return

    if message_type == "HEARTBEAT":
        await runtime._send_safe(websocket, envelope("HEARTBEAT_ACK", timestamp=iso_now()))
        return

    if message_type == "CREATE_ROOM":
        await room_flow.create_room(runtime, websocket, payload)
        return

    if message_type == "JOIN_ROOM":
        await room_flow.join_room(runtime, websocket, payload)
        return

    if message_type == "LEAVE_ROOM":
        await room_flow.leave_room(runtime, websocket, payload)
        return

    if message_type == "INVITE_PLAYER":
        await room_flow.invite_player(runtime, websocket, payload)
        return

    if message_type == "TOGGLE_READY":
        await room_flow.toggle_ready(runtime, websocket, payload)
        return

    if message_type == "START_GAME":
        await room_flow.start_game(runtime, websocket, payload)
        return

    if message_type == "REJOIN_ROOM":
        await room_flow.rejoin_room(runtime, websocket, payload)
        return

    if message_type == "SYNC_ROOM":
        await room_flow.sync_room(runtime, websocket, payload)
        return

    if message_type == "JOIN_CHARACTER_SELECTION":
        await selection_flow.join_character_selection(runtime, websocket, payload)
        return

    if message_type == "CHARACTER_SELECTED":
        await selection_flow.character_selected(runtime, websocket, payload)
        return

    if message_type == "WAR_BATTLE_CONNECT":
        await war_flow.connect(runtime, websocket, payload)
        return

    if message_type == "WAR_PROPOSE_WEAPON":
        await war_flow.propose_weapon(runtime, websocket, payload)
        return

    if message_type == "WAR_VOTE":
        await war_flow.cast_vote(runtime, websocket, payload)
        return

    if message_type == "WAR_LAUNCH_WEAPON":
        await war_flow.launch_weapon(runtime, websocket, payload)
        return

    if message_type == "WAR_PERSONAL_ACTION":
        await war_flow.personal_action(runtime, websocket, payload)
        return

    if message_type == "WAR_REVOKE_PERMISSION":
        await war_flow.revoke_permission(runtime, websocket, payload)
        return

    if message_type == "WAR_GRANT_PERMISSION":
        await war_flow.grant_permission(runtime, websocket, payload)
        return

    if message_type == "WAR_DELEGATION_COMPLETE":
        await war_flow.delegation_complete(runtime, websocket, payload)
        return

    raise ProtocolError(f"Unknown message type: {message_type}", "UNKNOWN_MESSAGE_TYPE")
