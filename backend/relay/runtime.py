from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from .battle_store import BattleStore
from .character_selection import SelectionCoordinator
from .config import Settings, settings as default_settings
from .connections import ConnectionRegistry
from .invitations import InvitationStore
from .room_store import RoomStore
from .runtime_errors import ProtocolError, RelayError
from .runtime_message_handlers import handle_message
from .runtime_room_flow import schedule_disconnect_grace
from .runtime_types import BattleRuntime, RoomRuntime
from .runtime_utils import envelope, now_ms, short_address
from .settlement import SettlementGateway, build_gateway

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class RelayRuntime:
    def __init__(
        self,
        config: Settings | None = None,
        gateway: SettlementGateway | None = None,
    ) -> None:
        self.settings = config or default_settings
        self.rooms = RoomStore()
        self.invitations = InvitationStore(self.rooms, self.settings.invitation_ttl_ms)
        self.selections = SelectionCoordinator()
        self.battles = BattleStore()
        self.connections = ConnectionRegistry()
        self.gateway = gateway or build_gateway(self.settings)
        self.rooms_lock = asyncio.Lock()
        self.started_at_ms = now_ms()
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._janitor: asyncio.Task[None] | None = None
        self._ws_stats: dict[str, int] = {
            "connectSuccess": 0,
            "disconnects": 0,
            "messageReceived": 0,
            "pingReceived": 0,
            "invalidMessages": 0,
            "errorsSent": 0,
            "internalErrors": 0,
            "graceRemovals": 0,
            "hostReassigned": 0,
            "votesStarted": 0,
            "votesPassed": 0,
            "votesFailed": 0,
            "weaponsLaunched": 0,
            "settlementFailures": 0,
            "battlesCreated": 0,
            "activeConnections": 0,
            "peakConnections": 0,
        }

    def _increment_stat(self, key: str, amount: int = 1) -> None:
        self._ws_stats[key] = int(self._ws_stats.get(key, 0)) + amount

    def _on_connect(self) -> None:
        self._increment_stat("connectSuccess")
        active_connections = int(self._ws_stats.get("activeConnections", 0)) + 1
        self._ws_stats["activeConnections"] = active_connections
        if active_connections > int(self._ws_stats.get("peakConnections", 0)):
            self._ws_stats["peakConnections"] = active_connections

    def _on_disconnect(self) -> None:
        self._increment_stat("disconnects")
        active_connections = max(0, int(self._ws_stats.get("activeConnections", 0)) - 1)
        self._ws_stats["activeConnections"] = active_connections

    def _log_ws_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "ws.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":"), default=str),
        )

    async def start(self) -> None:
        if self._janitor is None or self._janitor.done():
            self._janitor = asyncio.create_task(self._run_invitation_janitor(), name="relay:invitation-janitor")
        logger.info("Relay runtime started")

    async def shutdown(self) -> None:
        pending = list(self._timers.values())
        if self._janitor is not None:
            self._janitor.cancel()
            pending.append(self._janitor)
            self._janitor = None
        for key in list(self._timers):
            self._cancel_timer(key)
        current = asyncio.current_task()
        await asyncio.gather(*(task for task in pending if task is not current), return_exceptions=True)
        self._ws_stats["activeConnections"] = 0
        logger.info("Relay runtime stopped")

    async def _run_invitation_janitor(self) -> None:
        interval_s = self.settings.invitation_sweep_interval_ms / 1000
        while True:
            await asyncio.sleep(interval_s)
            async with self.rooms_lock:
                self.invitations.sweep_expired()

    async def get_ws_stats(self) -> dict[str, Any]:
        async with self.rooms_lock:
            room_summaries = [
                {
                    "code": room.code,
                    "players": len(room.players),
                    "maxPlayers": room.max_players,
                }
                for room in self.rooms.rooms.values()
            ]
            selection_sessions = len(self.selections.sessions)
            pending_invitations = len(self.invitations)

        room_summaries.sort(key=lambda item: int(item.get("players", 0)), reverse=True)
        stats = dict(self._ws_stats)
        stats["sendFailures"] = self.connections.send_failures

        return {
            "generatedAt": now_ms(),
            "activeRooms": len(room_summaries),
            "activeBattles": len(self.battles),
            "selectionSessions": selection_sessions,
            "pendingInvitations": pending_invitations,
            "pendingTimers": len(self._timers),
            "stats": stats,
            "rooms": room_summaries[:50],
        }

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._on_connect()
        client = getattr(websocket, "client", None)
        self._log_ws_event("connect", client=f"{client.host}:{client.port}" if client else "-")

        disconnect_code: int | None = None
        disconnect_reason = "unknown"

        try:
            while True:
                raw = await websocket.receive_text()
                self._increment_stat("messageReceived")
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    data = None
                if not isinstance(data, dict):
                    self._increment_stat("invalidMessages")
                    await self._send_error(websocket, "ERROR", "INVALID_MESSAGE", "Invalid message format")
                    continue
                await self.dispatch(websocket, data)
        except WebSocketDisconnect as exc:
            disconnect_code = exc.code
            disconnect_reason = "websocket_disconnect"
        except Exception:
            disconnect_reason = "server_error"
            logger.exception("Unexpected websocket error")
        finally:
            await self._cleanup_connection(websocket, reason=disconnect_reason, close_code=disconnect_code)

    async def dispatch(self, websocket: WebSocket, data: dict[str, Any]) -> None:
        """Run one inbound frame. Failures become an error frame for this channel only."""
        message_type = str(data.get("type") or "").strip()
        error_type = "WAR_ERROR" if message_type.startswith("WAR_") else "ERROR"
        payload = data.get("payload")
        if payload is None:
            payload = {key: value for key, value in data.items() if key != "type"}

        try:
            if not message_type or not isinstance(payload, dict):
                self._increment_stat("invalidMessages")
                raise ProtocolError("Invalid message format")
            await handle_message(self, websocket, message_type, payload)
        except RelayError as exc:
            self._log_ws_event(
                "request_failed",
                level=logging.WARNING,
                type=message_type or "-",
                code=exc.code,
                message=exc.message,
            )
            await self._send_error(websocket, error_type, exc.code, exc.message)
        except Exception:
            self._increment_stat("internalErrors")
            logger.exception("Handler for %s failed", message_type or "-")
            await self._send_error(websocket, error_type, "INTERNAL_ERROR", "Internal server error")

    async def _cleanup_connection(
        self,
        websocket: WebSocket,
        reason: str = "unknown",
        close_code: int | None = None,
    ) -> None:
        state = self.connections.release(websocket)
        self._on_disconnect()
        self._log_ws_event(
            "disconnect",
            address=short_address(state.address) if state else "-",
            roomCode=state.room_code if state else None,
            battleId=state.battle_id if state else None,
            reason=reason,
            closeCode=close_code,
        )
        if state is not None and state.address and state.room_code:
            schedule_disconnect_grace(self, state.room_code, state.address)

    async def _send_safe(self, websocket: WebSocket | None, data: dict[str, Any]) -> bool:
        return await self.connections.send(websocket, data)

    async def _send_error(self, websocket: WebSocket, error_type: str, code: str, message: str) -> None:
        self._increment_stat("errorsSent")
        await self._send_safe(websocket, envelope(error_type, code=code, message=message))

    async def _broadcast_room(
        self,
        room: RoomRuntime,
        message: dict[str, Any],
        exclude: WebSocket | None = None,
    ) -> tuple[int, int]:
        return await self.connections.fan_out(
            "room",
            room.code,
            [player.address for player in room.players],
            message,
            exclude=exclude,
        )

    async def _broadcast_battle(
        self,
        battle: BattleRuntime,
        message: dict[str, Any],
        exclude: WebSocket | None = None,
    ) -> tuple[int, int]:
        return await self.connections.fan_out(
            "battle",
            battle.battle_id,
            [member.address for member in battle.team_members],
            message,
            exclude=exclude,
        )

    def _cancel_timer(self, key: str) -> None:
        task = self._timers.get(key)
        if task is None or task is asyncio.current_task():
            return
        self._timers.pop(key, None)
        if not task.done():
            task.cancel()

    def _has_timer(self, key: str) -> bool:
        task = self._timers.get(key)
        return task is not None and not task.done()

    def _schedule_timer(self, key: str, delay_ms: int, callback: TimerCallback) -> None:
        self._cancel_timer(key)
        delay_s = max(0, delay_ms or 0) / 1000

        async def runner() -> None:
            try:
                await asyncio.sleep(delay_s)
                await callback()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("Timer %s failed", key)
            finally:
                if self._timers.get(key) is asyncio.current_task():
                    self._timers.pop(key, None)

        self._timers[key] = asyncio.create_task(runner(), name=f"relay:{key}")
