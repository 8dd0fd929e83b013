from __future__ import annotations

import itertools
import logging
from typing import Any, Mapping

from .combat import generate_round_enemies
from .runtime_constants import DEFAULT_CHARACTERS, MAX_LEDGER_ENTRIES
from .runtime_errors import battle_not_found, not_in_battle
from .runtime_types import BattleRuntime, LedgerEntry, RoomPlayer, SpendShare, TeamMember
from .runtime_utils import iso_now, normalize_address, prefixed_id, same_address, short_address

logger = logging.getLogger(__name__)


def _character_field(character: Any, name: str) -> str:
    if isinstance(character, Mapping):
        return str(character.get(name) or "")
    return ""


def _selection_for(selections: Mapping[str, Any] | None, address: str) -> Any:
    if not selections:
        return None
    wanted = normalize_address(address)
    for key, character in selections.items():
        if normalize_address(key) == wanted:
            return character
    return None


class BattleStore:
    def __init__(self) -> None:
        self.battles: dict[str, BattleRuntime] = {}
        self._sequence = itertools.count(1)

    def __len__(self) -> int:
        return len(self.battles)

    def get(self, battle_id: str) -> BattleRuntime | None:
        return self.battles.get(battle_id)

    def require(self, battle_id: str) -> BattleRuntime:
        battle = self.battles.get(battle_id)
        if battle is None:
            raise battle_not_found()
        return battle

    @staticmethod
    def find_member(battle: BattleRuntime, address: str) -> TeamMember | None:
        return next((m for m in battle.team_members if same_address(m.address, address)), None)

    def require_member(self, battle_id: str, address: str) -> tuple[BattleRuntime, TeamMember]:
        battle = self.require(battle_id)
        member = self.find_member(battle, address)
        if member is None:
            raise not_in_battle()
        return battle, member

    def initialize_battle(
        self,
        team_leader_address: str,
        character: Mapping[str, Any] | None = None,
        room_players: list[RoomPlayer] | None = None,
        selections: Mapping[str, Any] | None = None,
    ) -> BattleRuntime:
        if room_players and len(room_players) >= 2:
            team = self._multiplayer_team(room_players, selections)
            logger.info("Creating multiplayer battle with %d players", len(team))
        else:
            team = [self._solo_leader(team_leader_address, character)]
            logger.info("Creating solo battle for %s", short_address(team_leader_address))

        battle = BattleRuntime(
            battle_id=prefixed_id("war"),
            team_leader_address=team_leader_address,
            team_members=team,
            enemies=generate_round_enemies(1),
            created_at=iso_now(),
            created_seq=next(self._sequence),
        )
        self.record_transaction(battle, "BATTLE_INITIALIZED")
        self.battles[battle.battle_id] = battle
        logger.info("War battle initialized: %s by %s", battle.battle_id, short_address(team_leader_address))
        return battle

    def find_battle_by_leader(self, team_leader_address: str) -> BattleRuntime | None:
        candidates = [
            battle
            for battle in self.battles.values()
            if same_address(battle.team_leader_address, team_leader_address)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda battle: battle.created_seq)

    def battles_with_member(self, address: str) -> list[BattleRuntime]:
        return [battle for battle in self.battles.values() if self.find_member(battle, address) is not None]

    @staticmethod
    def record_transaction(
        battle: BattleRuntime,
        weapon: str,
        *,
        cost: float = 0.0,
        spent_from: list[SpendShare] | None = None,
        transaction_hash: str | None = None,
        success: bool = True,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            entry_id=prefixed_id("tx"),
            weapon=weapon,
            cost=cost,
            spent_from=list(spent_from or []),
            timestamp=iso_now(),
            success=success,
            transaction_hash=transaction_hash,
        )
        battle.transactions.insert(0, entry)
        del battle.transactions[MAX_LEDGER_ENTRIES:]
        return entry

    def revoke_permission(self, battle_id: str, address: str) -> tuple[BattleRuntime, TeamMember, LedgerEntry]:
        battle, member = self.require_member(battle_id, address)
        member.is_active = False
        member.last_action = "PERMISSION REVOKED - Emergency Stop"
        entry = self.record_transaction(battle, "PERMISSION_REVOKED")
        logger.info("Permission revoked for %s in %s", short_address(address), battle_id)
        return battle, member, entry

    def grant_permission(
        self,
        battle_id: str,
        address: str,
        amount: float,
    ) -> tuple[BattleRuntime, TeamMember, LedgerEntry]:
        battle, member = self.require_member(battle_id, address)
        member.delegated_amount += amount
        member.is_active = True
        member.last_action = f"Granted additional {amount} MNT permission"
        entry = self.record_transaction(battle, "PERMISSION_GRANTED")
        logger.info("Permission granted: %s MNT to %s", amount, short_address(address))
        return battle, member, entry

    def apply_delegation(
        self,
        battle: BattleRuntime,
        address: str,
        amount: float,
        transaction_hash: str | None,
    ) -> LedgerEntry | None:
        """Record a finished on-chain delegation. Leaders never delegate to themselves."""
        member = self.find_member(battle, address)
        if member is None or member.is_team_leader:
            return None
        member.delegated_amount = amount
        member.is_active = True
        member.last_action = f"Delegated {amount} MNT to team leader"
        return self.record_transaction(
            battle,
            "DELEGATION_COMPLETE",
            transaction_hash=transaction_hash,
        )

    def record_personal_action(
        self,
        battle_id: str,
        address: str,
        action_name: str,
        cost: float,
        transaction_hash: str | None,
    ) -> tuple[BattleRuntime, TeamMember, LedgerEntry]:
        battle, member = self.require_member(battle_id, address)
        entry = self.record_transaction(
            battle,
            action_name,
            cost=cost,
            spent_from=[SpendShare(address=member.address, amount=cost)],
            transaction_hash=transaction_hash,
        )
        member.last_action = f"Used {action_name} (personal funds)"
        return battle, member, entry

    @staticmethod
    def _multiplayer_team(
        room_players: list[RoomPlayer],
        selections: Mapping[str, Any] | None,
    ) -> list[TeamMember]:
        team: list[TeamMember] = []
        for index, player in enumerate(room_players):
            selected = _selection_for(selections, player.address)
            fallback = DEFAULT_CHARACTERS[index % len(DEFAULT_CHARACTERS)]
            name = _character_field(selected, "name") or fallback["name"]
            image = _character_field(selected, "image") or fallback["image"]
            # Multiplayer teams have no leader; weapons go through the vote.
            team.append(
                TeamMember(
                    address=player.address,
                    display_name=player.display_name,
                    character_name=name,
                    character_image=image,
                    is_team_leader=False,
                    last_action=f"{name} joined the battle!",
                )
            )
        return team

    @staticmethod
    def _solo_leader(address: str, character: Mapping[str, Any] | None) -> TeamMember:
        fallback = DEFAULT_CHARACTERS[0]
        name = _character_field(character, "name") or fallback["name"]
        image = _character_field(character, "image") or fallback["image"]
        return TeamMember(
            address=address,
            display_name=short_address(address),
            character_name=name,
            character_image=image,
            is_team_leader=True,
            last_action=f"{name} - Ready for battle!",
        )
