from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket

from .runtime_errors import PreconditionError, ProtocolError
from .runtime_snapshot import serialize_invitation, serialize_player, serialize_players, serialize_room
from .runtime_types import RoomDeparture, RoomPlayer, RoomRuntime
from .runtime_utils import (
    envelope,
    iso_now,
    normalize_address,
    require_text,
    same_address,
    sanitize_display_name,
    sanitize_room_code,
    short_address,
)

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .runtime import RelayRuntime


def _grace_key(room_code: str, address: str) -> str:
    return f"grace:{room_code}:{normalize_address(address)}"


def _room_code(payload: dict[str, Any], name: str = "roomCode") -> str:
    code = sanitize_room_code(payload.get(name))
    if not code:
        raise ProtocolError(f"Missing field: {name}")
    return code


def _parse_room(runtime: "RelayRuntime", payload: dict[str, Any]) -> RoomRuntime:
    room_id = str(payload.get("id") or "").strip()
    code = sanitize_room_code(payload.get("code"))
    host = str(payload.get("host") or "").strip()
    if not room_id or not code or not host:
        raise PreconditionError("Invalid room data", "INVALID_ROOM_DATA")

    players_raw = payload.get("players")
    host_raw: dict[str, Any] = {}
    if isinstance(players_raw, list):
        host_raw = next(
            (
                item
                for item in players_raw
                if isinstance(item, dict) and same_address(item.get("address"), host)
            ),
            {},
        )

    try:
        max_players = int(payload.get("maxPlayers") or runtime.settings.default_max_players)
    except (TypeError, ValueError):
        max_players = runtime.settings.default_max_players

    created_at = str(payload.get("createdAt") or "").strip() or iso_now()
    return RoomRuntime(
        code=code,
        name=" ".join(str(payload.get("name") or "").split())[:48] or f"Room {code}",
        host=host,
        players=[
            RoomPlayer(
                address=host,
                display_name=sanitize_display_name(host_raw.get("displayName"), host),
                is_host=True,
                is_ready=bool(host_raw.get("isReady")),
                joined_at=str(host_raw.get("joinedAt") or "").strip() or created_at,
            )
        ],
        max_players=max(1, max_players),
        created_at=created_at,
        room_id=room_id,
        is_private=bool(payload.get("isPrivate")),
        game_mode=str(payload.get("gameMode") or "multiplayer"),
    )


async def announce_departures(runtime: "RelayRuntime", departures: list[RoomDeparture]) -> None:
    for departure in departures:
        room = departure.room
        runtime.connections.unbind("room", room.code, departure.player.address)
        if departure.new_host is not None:
            runtime._increment_stat("hostReassigned")
        if departure.room_deleted:
            runtime.connections.drop_scope("room", room.code)
            runtime._log_ws_event("room_deleted", roomCode=room.code)
            continue
        await runtime._broadcast_room(
            room,
            envelope(
                "PLAYER_LEFT",
                player=serialize_player(departure.player),
                players=serialize_players(room),
                newHost=departure.new_host.address if departure.new_host else None,
                room=serialize_room(room),
            ),
        )


def _bind_room_channel(runtime: "RelayRuntime", room: RoomRuntime, address: str, websocket: WebSocket) -> None:
    runtime.connections.bind("room", room.code, address, websocket)
    runtime._cancel_timer(_grace_key(room.code, address))


async def create_room(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    room = _parse_room(runtime, payload)
    async with runtime.rooms_lock:
        departures = runtime.rooms.create_room(room)
        await announce_departures(runtime, departures)
        _bind_room_channel(runtime, room, room.host, websocket)
        runtime._log_ws_event("room_created", roomCode=room.code, host=short_address(room.host))
        await runtime._send_safe(websocket, envelope("ROOM_CREATED", room=serialize_room(room)))


async def join_room(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    player_raw = payload.get("player")
    if not isinstance(player_raw, dict):
        raise ProtocolError("Missing field: player")
    address = require_text(player_raw, "address")
    candidate = RoomPlayer(
        address=address,
        display_name=sanitize_display_name(player_raw.get("displayName"), address),
        joined_at=str(player_raw.get("joinedAt") or "").strip() or iso_now(),
    )

    async with runtime.rooms_lock:
        outcome = runtime.rooms.join_room(code, candidate)
        await announce_departures(runtime, outcome.departures)
        room = outcome.room
        _bind_room_channel(runtime, room, outcome.player.address, websocket)
        await runtime._send_safe(websocket, envelope("ROOM_JOINED", room=serialize_room(room)))

        if outcome.reconnected:
            runtime._log_ws_event("room_reconnected", roomCode=room.code, address=short_address(address))
            await runtime._broadcast_room(
                room,
                envelope(
                    "PLAYER_RECONNECTED",
                    player=serialize_player(outcome.player),
                    players=serialize_players(room),
                    room=serialize_room(room),
                ),
                exclude=websocket,
            )
            return

        runtime._log_ws_event("room_joined", roomCode=room.code, address=short_address(address))
        delay_ms = runtime.settings.join_broadcast_delay_ms
        if delay_ms <= 0:
            await _broadcast_player_joined(runtime, room.code, outcome.player.address)
            return

        async def delayed_broadcast() -> None:
            async with runtime.rooms_lock:
                await _broadcast_player_joined(runtime, code, address)

        runtime._schedule_timer(f"joined:{code}:{normalize_address(address)}", delay_ms, delayed_broadcast)


async def _broadcast_player_joined(runtime: "RelayRuntime", code: str, address: str) -> None:
    room = runtime.rooms.get(code)
    if room is None:
        return
    player = runtime.rooms.find_player(room, address)
    if player is None:
        return
    await runtime._broadcast_room(
        room,
        envelope(
            "PLAYER_JOINED",
            player=serialize_player(player),
            players=serialize_players(room),
            room=serialize_room(room),
        ),
    )


async def leave_room(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    address = require_text(payload, "playerAddress")
    async with runtime.rooms_lock:
        departure = runtime.rooms.leave_room(code, address)
        runtime._cancel_timer(_grace_key(code, address))
        await runtime._send_safe(
            websocket,
            envelope("ROOM_LEFT", roomCode=code, message="Successfully left the room"),
        )
        await announce_departures(runtime, [departure])


async def invite_player(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    invite_address = require_text(payload, "inviteAddress")
    inviter_address = require_text(payload, "inviterAddress")
    async with runtime.rooms_lock:
        invitation = runtime.invitations.create(code, invite_address, inviter_address)
    await runtime._send_safe(
        websocket,
        envelope(
            "INVITE_SENT",
            inviteAddress=invite_address,
            roomCode=code,
            invitation=serialize_invitation(invitation),
        ),
    )


async def toggle_ready(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    address = require_text(payload, "playerAddress")
    async with runtime.rooms_lock:
        room, player = runtime.rooms.toggle_ready(code, address)
        logger.info(
            "%s %s in room %s",
            player.display_name,
            "ready" if player.is_ready else "not ready",
            room.code,
        )
        await runtime._broadcast_room(
            room,
            envelope("PLAYER_READY", player=serialize_player(player), players=serialize_players(room)),
        )


async def start_game(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    host_address = require_text(payload, "hostAddress")
    async with runtime.rooms_lock:
        room = runtime.rooms.check_start(code, host_address)
        logger.info("Starting %s game in room %s with %d players", room.game_mode, room.code, len(room.players))
        # The room stays alive for character selection.
        await runtime._broadcast_room(
            room,
            envelope(
                "GAME_STARTING",
                gameMode=room.game_mode,
                players=serialize_players(room),
                room=serialize_room(room),
            ),
        )


async def rejoin_room(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    address = require_text(payload, "playerAddress")
    async with runtime.rooms_lock:
        room, player = runtime.rooms.require_member(code, address, missing_room_message="Room no longer exists")
        _bind_room_channel(runtime, room, player.address, websocket)
        runtime._log_ws_event("room_rejoined", roomCode=room.code, address=short_address(address))
        await runtime._send_safe(websocket, envelope("ROOM_REJOINED", room=serialize_room(room)))
        await runtime._broadcast_room(
            room,
            envelope("PLAYER_REJOINED", player=serialize_player(player), players=serialize_players(room)),
            exclude=websocket,
        )


async def sync_room(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    code = _room_code(payload)
    address = require_text(payload, "playerAddress")
    async with runtime.rooms_lock:
        room, player = runtime.rooms.require_member(code, address, missing_room_message="Room no longer exists")
        _bind_room_channel(runtime, room, player.address, websocket)
        await runtime._send_safe(websocket, envelope("ROOM_UPDATED", room=serialize_room(room)))


def schedule_disconnect_grace(runtime: "RelayRuntime", room_code: str, address: str) -> None:
    """Keep a disconnected player's seat until the grace period runs out."""
    room = runtime.rooms.get(room_code)
    if room is None or runtime.rooms.find_player(room, address) is None:
        # Stale socket from a room the player already left.
        return

    async def expire() -> None:
        async with runtime.rooms_lock:
            await _expire_disconnect_grace(runtime, room_code, address)

    logger.info(
        "Player %s disconnected from room %s (keeping spot for reconnection)",
        short_address(address),
        room_code,
    )
    runtime._schedule_timer(_grace_key(room_code, address), runtime.settings.disconnect_grace_ms, expire)


async def _expire_disconnect_grace(runtime: "RelayRuntime", room_code: str, address: str) -> None:
    room = runtime.rooms.get(room_code)
    if room is None or runtime.rooms.find_player(room, address) is None:
        return
    # Liveness is checked now, not when the timer was armed.
    if runtime.connections.is_live("room", room_code, address):
        return

    departure = runtime.rooms.leave_room(room_code, address)
    runtime._increment_stat("graceRemovals")
    runtime._log_ws_event(
        "grace_expired",
        roomCode=room_code,
        address=short_address(address),
        roomDeleted=departure.room_deleted,
        newHost=short_address(departure.new_host.address) if departure.new_host else None,
    )
    await announce_departures(runtime, [departure])
