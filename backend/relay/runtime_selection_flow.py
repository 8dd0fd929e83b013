from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket

from .runtime_errors import ProtocolError
from .runtime_types import SelectionSession
from .runtime_utils import envelope, require_text, sanitize_display_name, sanitize_room_code

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .runtime import RelayRuntime


async def join_character_selection(
    runtime: "RelayRuntime",
    websocket: WebSocket,
    payload: dict[str, Any],
) -> None:
    code = sanitize_room_code(payload.get("roomCode"))
    if not code:
        raise ProtocolError("Missing field: roomCode")
    address = require_text(payload, "playerAddress")
    display_name = sanitize_display_name(payload.get("playerName"), address)

    async with runtime.rooms_lock:
        session = runtime.selections.join(code, address, display_name)
        runtime.connections.bind("selection", code, address, websocket)
        status = runtime.selections.status_snapshot(session)
    await runtime._send_safe(websocket, envelope("CHARACTER_SELECTION_UPDATE", playersStatus=status))


async def character_selected(
    runtime: "RelayRuntime",
    websocket: WebSocket,
    payload: dict[str, Any],
) -> None:
    code = sanitize_room_code(payload.get("roomCode"))
    if not code:
        raise ProtocolError("Missing field: roomCode")
    address = require_text(payload, "playerAddress")
    character = payload.get("character")
    if not isinstance(character, dict):
        raise ProtocolError("Missing field: character")
    ready = bool(payload.get("ready"))

    async with runtime.rooms_lock:
        session, final_selections = runtime.selections.select(code, address, character, ready)
        logger.info("Character selected in room %s: %s (ready: %s)", code, character.get("name"), ready)
        participants = list(session.players)
        await runtime.connections.fan_out(
            "selection",
            code,
            participants,
            envelope("CHARACTER_SELECTION_UPDATE", playersStatus=runtime.selections.status_snapshot(session)),
        )
        if final_selections is None:
            return

        logger.info("All %d players ready in room %s", len(participants), code)
        await runtime.connections.fan_out(
            "selection",
            code,
            participants,
            envelope("ALL_PLAYERS_READY", characterSelections=final_selections),
        )
        _schedule_session_drop(runtime, code, session)


def _schedule_session_drop(runtime: "RelayRuntime", code: str, session: SelectionSession) -> None:
    async def drop() -> None:
        async with runtime.rooms_lock:
            # A newer session under the same code survives.
            if runtime.selections.drop(code, session):
                runtime.connections.drop_scope("selection", code)

    runtime._schedule_timer(f"selection:{code}", runtime.settings.selection_cleanup_delay_ms, drop)
