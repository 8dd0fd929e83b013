from __future__ import annotations

import logging
from typing import Any

from .runtime_errors import NotFoundError
from .runtime_types import CharacterChoice, SelectionSession
from .runtime_utils import iso_now, normalize_address

logger = logging.getLogger(__name__)


class SelectionCoordinator:
    """Per-room character picking that runs between the lobby and the battle."""

    def __init__(self) -> None:
        self.sessions: dict[str, SelectionSession] = {}

    def get(self, room_code: str) -> SelectionSession | None:
        return self.sessions.get(room_code)

    def join(self, room_code: str, address: str, display_name: str) -> SelectionSession:
        session = self.sessions.get(room_code)
        if session is None:
            session = SelectionSession(room_code=room_code)
            self.sessions[room_code] = session
        session.players[normalize_address(address)] = display_name
        logger.info("%s joined character selection for room %s", display_name, room_code)
        return session

    def select(
        self,
        room_code: str,
        address: str,
        character: dict[str, Any],
        ready: bool,
    ) -> tuple[SelectionSession, dict[str, dict[str, Any]] | None]:
        """Record a pick; the second value is the final selection map once everyone is ready."""
        session = self.sessions.get(room_code)
        if session is None:
            raise NotFoundError("Character selection room not found", "SESSION_NOT_FOUND")

        key = normalize_address(address)
        session.selections[key] = CharacterChoice(
            address=address,
            character=character,
            selected_at=iso_now(),
        )
        if ready:
            session.ready_addresses.add(key)
        else:
            session.ready_addresses.discard(key)

        if session.players and len(session.ready_addresses) == len(session.players):
            return session, self.final_selections(session)
        return session, None

    def drop(self, room_code: str, session: SelectionSession) -> bool:
        if self.sessions.get(room_code) is not session:
            return False
        self.sessions.pop(room_code, None)
        logger.info("Character selection room %s cleaned up", room_code)
        return True

    @staticmethod
    def status_snapshot(session: SelectionSession) -> dict[str, dict[str, Any]]:
        return {
            choice.address: {
                "character": choice.character,
                "ready": key in session.ready_addresses,
            }
            for key, choice in session.selections.items()
        }

    @staticmethod
    def final_selections(session: SelectionSession) -> dict[str, dict[str, Any]]:
        return {choice.address: choice.character for choice in session.selections.values()}
