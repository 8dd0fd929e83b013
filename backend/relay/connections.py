from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .runtime_types import ChannelScope, ChannelState
from .runtime_utils import normalize_address, short_address

logger = logging.getLogger(__name__)

ChannelKey = tuple[str, str, str]


def is_open(websocket: WebSocket | None) -> bool:
    if websocket is None:
        return False
    return getattr(websocket, "client_state", None) == WebSocketState.CONNECTED


class ConnectionRegistry:
    """Current channel per (scope, aggregate key, address).

    Binding again under the same key replaces the previous socket, so
    broadcasts always resolve the newest connection of a player.
    """

    def __init__(self) -> None:
        self._channels: dict[ChannelKey, WebSocket] = {}
        self._annotations: dict[WebSocket, ChannelState] = {}
        self.send_failures = 0

    @staticmethod
    def _key(scope: ChannelScope, key: str, address: str) -> ChannelKey:
        return (scope, key, normalize_address(address))

    def annotation(self, websocket: WebSocket) -> ChannelState:
        state = self._annotations.get(websocket)
        if state is None:
            state = ChannelState()
            self._annotations[websocket] = state
        return state

    def bind(self, scope: ChannelScope, key: str, address: str, websocket: WebSocket) -> None:
        self._channels[self._key(scope, key, address)] = websocket
        state = self.annotation(websocket)
        state.address = address
        if scope == "room":
            state.room_code = key
        elif scope == "battle":
            state.battle_id = key
        else:
            state.selection_room = key

    def unbind(self, scope: ChannelScope, key: str, address: str) -> WebSocket | None:
        websocket = self._channels.pop(self._key(scope, key, address), None)
        if websocket is not None:
            state = self._annotations.get(websocket)
            if state is not None and scope == "room" and state.room_code == key:
                state.room_code = None
        return websocket

    def drop_scope(self, scope: ChannelScope, key: str) -> None:
        for channel_key in [k for k in self._channels if k[0] == scope and k[1] == key]:
            self._channels.pop(channel_key, None)

    def channel_for(self, scope: ChannelScope, key: str, address: str) -> WebSocket | None:
        return self._channels.get(self._key(scope, key, address))

    def is_live(self, scope: ChannelScope, key: str, address: str) -> bool:
        return is_open(self.channel_for(scope, key, address))

    def release(self, websocket: WebSocket) -> ChannelState | None:
        for channel_key in [k for k, ws in self._channels.items() if ws is websocket]:
            self._channels.pop(channel_key, None)
        return self._annotations.pop(websocket, None)

    async def send(self, websocket: WebSocket | None, message: dict[str, Any]) -> bool:
        if websocket is None:
            return False
        try:
            await websocket.send_json(message)
        except Exception as exc:
            # Connection may already be closed.
            self.send_failures += 1
            logger.debug(
                "[SEND_FAIL] type=%s reason=%r ws_client_state=%s",
                message.get("type"),
                exc,
                getattr(websocket, "client_state", None),
            )
            return False
        return True

    async def fan_out(
        self,
        scope: ChannelScope,
        key: str,
        addresses: Iterable[str],
        message: dict[str, Any],
        exclude: WebSocket | None = None,
    ) -> tuple[int, int]:
        sent = 0
        missing: list[str] = []
        for address in addresses:
            websocket = self.channel_for(scope, key, address)
            if websocket is not None and websocket is exclude:
                continue
            if not is_open(websocket):
                missing.append(short_address(address))
                continue
            if await self.send(websocket, message):
                sent += 1
            else:
                missing.append(short_address(address))

        if missing:
            logger.warning(
                "Partial delivery of %s to %s %s: %d sent, missing %s",
                message.get("type"),
                scope,
                key,
                sent,
                ", ".join(missing),
            )
        return sent, len(missing)
