from __future__ import annotations

import logging

from .runtime_errors import PreconditionError, player_not_in_room, room_not_found
from .runtime_types import JoinOutcome, RoomDeparture, RoomPlayer, RoomRuntime
from .runtime_utils import same_address, short_address

logger = logging.getLogger(__name__)


class RoomStore:
    """Lobby rooms keyed by code.

    An address belongs to at most one room. Rooms disappear as soon as their
    player list is empty, and the host role always moves to the first remaining
    player in list order.
    """

    def __init__(self) -> None:
        self.rooms: dict[str, RoomRuntime] = {}

    def __len__(self) -> int:
        return len(self.rooms)

    def get(self, code: str) -> RoomRuntime | None:
        return self.rooms.get(code)

    def require(self, code: str, message: str = "Room not found") -> RoomRuntime:
        room = self.rooms.get(code)
        if room is None:
            raise room_not_found(message)
        return room

    def find_player(self, room: RoomRuntime, address: str) -> RoomPlayer | None:
        return next((p for p in room.players if same_address(p.address, address)), None)

    def require_member(
        self,
        code: str,
        address: str,
        *,
        missing_room_message: str = "Room not found",
    ) -> tuple[RoomRuntime, RoomPlayer]:
        room = self.require(code, missing_room_message)
        player = self.find_player(room, address)
        if player is None:
            raise player_not_in_room("You are not in this room")
        return room, player

    def create_room(self, room: RoomRuntime) -> list[RoomDeparture]:
        if room.code in self.rooms:
            raise PreconditionError("Room code already exists", "DUPLICATE_ROOM_CODE")

        departures = self.remove_everywhere(room.host)
        self._ensure_host_entry(room)
        self.rooms[room.code] = room
        logger.info("Room created: %s (%s) by %s", room.name, room.code, short_address(room.host))
        return departures

    def join_room(self, code: str, player: RoomPlayer) -> JoinOutcome:
        room = self.require(code)

        existing = self.find_player(room, player.address)
        if existing is not None:
            return JoinOutcome(room=room, player=existing, reconnected=True)

        if len(room.players) >= room.max_players:
            raise PreconditionError("Room is full", "ROOM_FULL")

        departures = self.remove_everywhere(player.address, except_code=code)
        player.is_host = False
        room.players.append(player)
        logger.info("%s joined room %s (%d players)", player.display_name, code, len(room.players))
        return JoinOutcome(room=room, player=player, departures=departures)

    def leave_room(self, code: str, address: str) -> RoomDeparture:
        room = self.require(code)
        if self.find_player(room, address) is None:
            raise player_not_in_room()
        return self._remove_player(room, address)

    def remove_everywhere(self, address: str, except_code: str | None = None) -> list[RoomDeparture]:
        departures: list[RoomDeparture] = []
        for room in list(self.rooms.values()):
            if room.code == except_code:
                continue
            if self.find_player(room, address) is None:
                continue
            departures.append(self._remove_player(room, address))
        return departures

    def toggle_ready(self, code: str, address: str) -> tuple[RoomRuntime, RoomPlayer]:
        room = self.require(code)
        player = self.find_player(room, address)
        if player is None:
            raise player_not_in_room()
        player.is_ready = not player.is_ready
        return room, player

    def check_start(self, code: str, host_address: str) -> RoomRuntime:
        room = self.require(code)
        if not same_address(room.host, host_address):
            raise PreconditionError("Only the host can start the game", "NOT_HOST")
        if not all(p.is_ready or p.is_host for p in room.players):
            raise PreconditionError("All players must be ready", "NOT_ALL_READY")
        if len(room.players) < 1:
            raise PreconditionError("Need at least 1 player to start", "TOO_FEW_PLAYERS")
        return room

    def _ensure_host_entry(self, room: RoomRuntime) -> None:
        host_entry = self.find_player(room, room.host)
        if host_entry is None:
            host_entry = RoomPlayer(address=room.host, display_name=short_address(room.host))
            room.players.insert(0, host_entry)
        for player in room.players:
            player.is_host = player is host_entry
        room.host = host_entry.address

    def _remove_player(self, room: RoomRuntime, address: str) -> RoomDeparture:
        index = next(i for i, p in enumerate(room.players) if same_address(p.address, address))
        removed = room.players.pop(index)
        departure = RoomDeparture(room=room, player=removed)

        if not room.players:
            if self.rooms.get(room.code) is room:
                self.rooms.pop(room.code, None)
            departure.room_deleted = True
            logger.info("Room %s deleted (empty)", room.code)
            return departure

        if removed.is_host or same_address(room.host, removed.address):
            departure.new_host = self._assign_new_host(room)
        return departure

    def _assign_new_host(self, room: RoomRuntime) -> RoomPlayer:
        candidate = room.players[0]
        for player in room.players:
            player.is_host = player is candidate
        room.host = candidate.address
        logger.info(
            "[HOST_REASSIGNED] room=%s new_host=%s",
            room.code,
            short_address(candidate.address),
        )
        return candidate
