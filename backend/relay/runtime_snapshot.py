from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .runtime_types import (
    BattleRuntime,
    Enemy,
    Invitation,
    LedgerEntry,
    RoomPlayer,
    RoomRuntime,
    SpendShare,
    TeamMember,
    Weapon,
    WeaponVote,
)


def _iso_from_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


def serialize_player(player: RoomPlayer) -> dict[str, Any]:
    return {
        "address": player.address,
        "displayName": player.display_name,
        "isHost": player.is_host,
        "isReady": player.is_ready,
        "joinedAt": player.joined_at,
    }


def serialize_players(room: RoomRuntime) -> list[dict[str, Any]]:
    return [serialize_player(player) for player in room.players]


def serialize_room(room: RoomRuntime) -> dict[str, Any]:
    return {
        "id": room.room_id,
        "code": room.code,
        "name": room.name,
        "host": room.host,
        "players": serialize_players(room),
        "maxPlayers": room.max_players,
        "isPrivate": room.is_private,
        "createdAt": room.created_at,
        "gameMode": room.game_mode,
    }


def serialize_member(member: TeamMember) -> dict[str, Any]:
    return {
        "address": member.address,
        "displayName": member.display_name,
        "characterName": member.character_name,
        "characterImage": member.character_image,
        "isTeamLeader": member.is_team_leader,
        "delegatedAmount": member.delegated_amount,
        "spentAmount": member.spent_amount,
        "isActive": member.is_active,
        "lastAction": member.last_action,
    }


def serialize_members(battle: BattleRuntime) -> list[dict[str, Any]]:
    return [serialize_member(member) for member in battle.team_members]


def serialize_enemy(enemy: Enemy) -> dict[str, Any]:
    return {
        "id": enemy.enemy_id,
        "type": enemy.type,
        "health": enemy.health,
        "maxHealth": enemy.max_health,
        "damage": enemy.damage,
        "position": dict(enemy.position),
        "isDestroyed": enemy.is_destroyed,
        "image": enemy.image,
    }


def serialize_enemies(battle: BattleRuntime) -> list[dict[str, Any]]:
    return [serialize_enemy(enemy) for enemy in battle.enemies]


def serialize_spending(spending: list[SpendShare]) -> list[dict[str, Any]]:
    return [{"address": share.address, "amount": share.amount} for share in spending]


def serialize_transaction(entry: LedgerEntry) -> dict[str, Any]:
    return {
        "id": entry.entry_id,
        "weapon": entry.weapon,
        "cost": entry.cost,
        "spentFrom": serialize_spending(entry.spent_from),
        "timestamp": entry.timestamp,
        "success": entry.success,
        "transactionHash": entry.transaction_hash,
    }


def serialize_weapon(weapon: Weapon) -> dict[str, Any]:
    return {
        "id": weapon.weapon_id,
        "name": weapon.name,
        "cost": weapon.cost,
        "damage": weapon.damage,
    }


def serialize_vote(vote: WeaponVote | None) -> dict[str, Any] | None:
    if vote is None:
        return None
    return {
        "voteId": vote.vote_id,
        "weaponId": vote.weapon_id,
        "weaponName": vote.weapon_name,
        "weaponCost": vote.weapon_cost,
        "proposedBy": vote.proposed_by,
        "proposedByName": vote.proposed_by_name,
        "votes": list(vote.votes),
        "rejectedBy": list(vote.rejected_by),
        "startTime": vote.start_time,
        "endTime": vote.end_time,
        "status": vote.status,
    }


def serialize_battle(battle: BattleRuntime, *, include_vote: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": battle.battle_id,
        "teamLeaderAddress": battle.team_leader_address,
        "teamMembers": serialize_members(battle),
        "enemies": serialize_enemies(battle),
        "transactions": [serialize_transaction(entry) for entry in battle.transactions],
        "phase": battle.phase,
        "round": battle.round,
        "createdAt": battle.created_at,
    }
    if include_vote:
        payload["activeVote"] = serialize_vote(battle.active_vote)
    return payload


def serialize_invitation(invitation: Invitation) -> dict[str, Any]:
    return {
        "id": invitation.invite_id,
        "roomCode": invitation.room_code,
        "roomName": invitation.room_name,
        "inviteAddress": invitation.invite_address,
        "inviterAddress": invitation.inviter_address,
        "inviterName": invitation.inviter_name,
        "createdAt": _iso_from_ms(invitation.created_at_ms),
        "expiresAt": _iso_from_ms(invitation.expires_at_ms),
    }
