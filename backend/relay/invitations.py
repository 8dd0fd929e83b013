from __future__ import annotations

import logging

from .room_store import RoomStore
from .runtime_errors import player_not_in_room
from .runtime_types import Invitation
from .runtime_utils import now_ms, prefixed_id, same_address, short_address

logger = logging.getLogger(__name__)


class InvitationStore:
    def __init__(self, rooms: RoomStore, ttl_ms: int) -> None:
        self.rooms = rooms
        self.ttl_ms = ttl_ms
        self.invitations: dict[str, Invitation] = {}

    def __len__(self) -> int:
        return len(self.invitations)

    def create(
        self,
        room_code: str,
        invite_address: str,
        inviter_address: str,
        *,
        now: int | None = None,
    ) -> Invitation:
        room = self.rooms.require(room_code)
        inviter = self.rooms.find_player(room, inviter_address)
        if inviter is None:
            raise player_not_in_room("You are not in this room")

        created_at = now if now is not None else now_ms()
        invitation = Invitation(
            invite_id=prefixed_id("invite"),
            room_code=room.code,
            room_name=room.name,
            invite_address=invite_address,
            inviter_address=inviter.address,
            inviter_name=inviter.display_name,
            created_at_ms=created_at,
            expires_at_ms=created_at + self.ttl_ms,
        )
        self.invitations[invitation.invite_id] = invitation
        logger.info("Invitation sent to %s for room %s", short_address(invite_address), room.code)
        return invitation

    def pending_for(self, address: str, *, now: int | None = None) -> list[Invitation]:
        """Live invitations for an address; stale ones found on the way are dropped."""
        current = now if now is not None else now_ms()
        pending: list[Invitation] = []
        for invite_id, invitation in list(self.invitations.items()):
            if not same_address(invitation.invite_address, address):
                continue
            room = self.rooms.get(invitation.room_code)
            if current >= invitation.expires_at_ms or room is None or len(room.players) >= room.max_players:
                self.invitations.pop(invite_id, None)
                continue
            pending.append(invitation)
        return pending

    def sweep_expired(self, *, now: int | None = None) -> int:
        current = now if now is not None else now_ms()
        expired = [
            invite_id
            for invite_id, invitation in self.invitations.items()
            if current >= invitation.expires_at_ms
        ]
        for invite_id in expired:
            self.invitations.pop(invite_id, None)
        if expired:
            logger.info("Cleaned up %d expired invitations", len(expired))
        return len(expired)
