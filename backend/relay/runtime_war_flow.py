from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

from fastapi import WebSocket

from . import voting
from .combat import (
    active_members,
    apply_weapon_damage,
    charge_members,
    resolve_round,
    resolve_weapon,
    split_cost,
    weapon_damage,
)
from .runtime_errors import PreconditionError, ProtocolError, RelayError, SettlementError
from .runtime_snapshot import (
    serialize_battle,
    serialize_enemies,
    serialize_members,
    serialize_spending,
    serialize_transaction,
    serialize_vote,
    serialize_weapon,
)
from .runtime_types import BattleRuntime, LedgerEntry, RoomPlayer, RoundOutcome, SpendShare, Weapon
from .runtime_utils import (
    coerce_amount,
    envelope,
    require_text,
    sanitize_display_name,
    sanitize_room_code,
    short_address,
    votes_needed,
)
from .settlement import settlement_error_message

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .runtime import RelayRuntime


def _vote_timer_key(battle_id: str) -> str:
    return f"vote:{battle_id}"


def _launch_payload(
    battle: BattleRuntime,
    weapon: Weapon,
    spending: list[SpendShare],
    transaction: LedgerEntry,
) -> dict[str, Any]:
    return envelope(
        "WAR_WEAPON_LAUNCHED",
        weapon=serialize_weapon(weapon),
        spending=serialize_spending(spending),
        enemies=serialize_enemies(battle),
        teamMembers=serialize_members(battle),
        transaction=serialize_transaction(transaction),
        phase=battle.phase,
        round=battle.round,
    )


async def initialize_battle(
    runtime: "RelayRuntime",
    team_leader_address: str,
    character: dict[str, Any] | None = None,
    room_code: str | None = None,
    current_room: dict[str, Any] | None = None,
    character_selections: dict[str, Any] | None = None,
) -> BattleRuntime:
    """Create a battle and tell the room's live members where to connect."""
    code = sanitize_room_code(room_code or (current_room or {}).get("code"))
    room_players: list[RoomPlayer] = []
    member_addresses: list[str] = []

    async with runtime.rooms_lock:
        room = runtime.rooms.get(code) if code else None
        if room is not None:
            room_players = [
                RoomPlayer(address=p.address, display_name=p.display_name, is_host=p.is_host)
                for p in room.players
            ]
            member_addresses = [p.address for p in room.players]
        elif current_room is not None:
            for raw in current_room.get("players") or []:
                if not isinstance(raw, dict) or not str(raw.get("address") or "").strip():
                    continue
                address = str(raw["address"]).strip()
                room_players.append(
                    RoomPlayer(address=address, display_name=sanitize_display_name(raw.get("displayName"), address))
                )

        battle = runtime.battles.initialize_battle(
            team_leader_address,
            character,
            room_players=room_players,
            selections=character_selections,
        )
        runtime._increment_stat("battlesCreated")

        if room is not None and len(room_players) >= 2:
            await runtime.connections.fan_out(
                "room",
                room.code,
                member_addresses,
                envelope(
                    "WAR_BATTLE_READY",
                    battleId=battle.battle_id,
                    teamLeaderAddress=battle.team_leader_address,
                    roomCode=room.code,
                ),
            )
    return battle


async def connect(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle_id = require_text(payload, "battleId")
    address = require_text(payload, "playerAddress")
    battle, member = runtime.battles.require_member(battle_id, address)
    async with battle.lock:
        runtime.connections.bind("battle", battle.battle_id, member.address, websocket)
        runtime._log_ws_event("battle_connected", battleId=battle.battle_id, address=short_address(address))
        await runtime._send_safe(websocket, envelope("WAR_BATTLE_CONNECTED", battle=serialize_battle(battle)))


async def propose_weapon(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle = runtime.battles.require(require_text(payload, "battleId"))
    weapon_id = require_text(payload, "weaponId")
    proposed_by = require_text(payload, "proposedBy")

    async with battle.lock:
        vote = voting.propose(
            battle,
            weapon_id=weapon_id,
            weapon_name=str(payload.get("weaponName") or weapon_id),
            weapon_cost=coerce_amount(payload.get("weaponCost")),
            proposed_by=proposed_by,
            proposed_by_name=str(payload.get("proposedByName") or "").strip() or None,
            duration_ms=runtime.settings.vote_duration_ms,
        )
        runtime._increment_stat("votesStarted")
        await runtime._broadcast_battle(
            battle,
            envelope(
                "WAR_VOTE_STARTED",
                vote=serialize_vote(vote),
                votesNeeded=votes_needed(len(battle.team_members)),
            ),
        )

        battle_id = battle.battle_id
        vote_id = vote.vote_id

        async def expire() -> None:
            current = runtime.battles.get(battle_id)
            if current is None:
                return
            async with current.lock:
                await settle_vote(runtime, current, vote_id)

        runtime._schedule_timer(_vote_timer_key(battle_id), runtime.settings.vote_duration_ms, expire)


async def cast_vote(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle = runtime.battles.require(require_text(payload, "battleId"))
    vote_id = require_text(payload, "voteId")
    voter = require_text(payload, "voterAddress")
    approve = bool(payload.get("approve"))

    async with battle.lock:
        if not voting.cast_vote(battle, vote_id, voter, approve):
            return
        vote = voting.require_active_vote(battle, vote_id)
        await runtime._broadcast_battle(battle, envelope("WAR_VOTE_UPDATED", vote=serialize_vote(vote)))

        if voting.early_outcome(battle, vote) is not None:
            await settle_vote(runtime, battle, vote_id)


async def settle_vote(runtime: "RelayRuntime", battle: BattleRuntime, vote_id: str) -> None:
    """Settle under the battle lock. Whoever flips the vote out of ``active`` first wins."""
    vote = voting.begin_settlement(battle, vote_id)
    if vote is None:
        return
    runtime._cancel_timer(_vote_timer_key(battle.battle_id))

    if vote.status == "failed":
        runtime._increment_stat("votesFailed")
        await runtime._broadcast_battle(battle, envelope("WAR_VOTE_FAILED", vote=serialize_vote(vote)))
        _schedule_vote_clear(runtime, battle.battle_id, vote_id)
        return

    runtime._increment_stat("votesPassed")
    await runtime._broadcast_battle(battle, envelope("WAR_VOTE_PASSED", vote=serialize_vote(vote)))
    weapon = Weapon(
        weapon_id=vote.weapon_id,
        name=vote.weapon_name,
        cost=vote.weapon_cost,
        damage=weapon_damage(vote.weapon_id),
    )
    try:
        await execute_weapon_launch(runtime, battle, weapon)
    except SettlementError as exc:
        await runtime._broadcast_battle(battle, envelope("WAR_ERROR", code=exc.code, message=exc.message))
    except RelayError as exc:
        logger.warning("Voted launch of %s skipped in %s: %s", weapon.name, battle.battle_id, exc.message)
    finally:
        _schedule_vote_clear(runtime, battle.battle_id, vote_id)


def _schedule_vote_clear(runtime: "RelayRuntime", battle_id: str, vote_id: str) -> None:
    async def clear() -> None:
        battle = runtime.battles.get(battle_id)
        if battle is None:
            return
        async with battle.lock:
            voting.clear_vote(battle, vote_id)

    runtime._schedule_timer(f"vote-clear:{battle_id}", runtime.settings.vote_clear_delay_ms, clear)


async def execute_weapon_launch(
    runtime: "RelayRuntime",
    battle: BattleRuntime,
    weapon: Weapon,
    targets: Iterable[str] | None = None,
) -> RoundOutcome | None:
    """Charge the active members, settle externally, then apply the hit.

    Nothing on the battle changes unless settlement succeeds. Returns None when
    the battle stopped being tracked while settlement was in flight.
    """
    if battle.phase == "victory":
        raise PreconditionError("The battle is already won", "BATTLE_OVER")

    members = active_members(battle)
    if not members:
        logger.error("No active members in battle %s", battle.battle_id)
        raise PreconditionError("No active team members", "NO_ACTIVE_MEMBERS")

    spending = split_cost(members, weapon.cost)
    logger.info(
        "Launching %s in %s: %d active members, %.4f each",
        weapon.name,
        battle.battle_id,
        len(members),
        spending[0].amount,
    )

    try:
        tx_hash = await runtime.gateway.purchase_weapon([share.address for share in spending], spending[0].amount)
    except SettlementError as exc:
        runtime._increment_stat("settlementFailures")
        logger.warning("Settlement failed for %s in %s: %s", weapon.name, battle.battle_id, exc.message)
        raise
    except Exception as exc:
        runtime._increment_stat("settlementFailures")
        logger.exception("Settlement failed for %s in %s", weapon.name, battle.battle_id)
        raise SettlementError(settlement_error_message(str(exc))) from exc

    if runtime.battles.get(battle.battle_id) is not battle:
        logger.warning("Battle %s is gone; settlement %s not applied", battle.battle_id, tx_hash)
        return None

    charge_members(battle, spending, weapon.name)
    apply_weapon_damage(battle.enemies, weapon.damage, targets)
    transaction = runtime.battles.record_transaction(
        battle,
        weapon.name,
        cost=weapon.cost,
        spent_from=spending,
        transaction_hash=tx_hash,
    )
    outcome = resolve_round(battle)
    runtime._increment_stat("weaponsLaunched")

    if outcome == "round_complete":
        await runtime._broadcast_battle(
            battle,
            envelope(
                "WAR_ROUND_COMPLETE",
                round=battle.round,
                enemies=serialize_enemies(battle),
                teamMembers=serialize_members(battle),
            ),
        )
        _schedule_round_relaunch(runtime, battle.battle_id, weapon, spending, transaction)
    else:
        if outcome == "victory":
            logger.info("Final victory in battle %s", battle.battle_id)
        await runtime._broadcast_battle(battle, _launch_payload(battle, weapon, spending, transaction))

    logger.info("Weapon %s launched in %s, tx %s", weapon.name, battle.battle_id, tx_hash)
    return outcome


def _schedule_round_relaunch(
    runtime: "RelayRuntime",
    battle_id: str,
    weapon: Weapon,
    spending: list[SpendShare],
    transaction: LedgerEntry,
) -> None:
    async def relaunch() -> None:
        battle = runtime.battles.get(battle_id)
        if battle is None:
            return
        async with battle.lock:
            await runtime._broadcast_battle(battle, _launch_payload(battle, weapon, spending, transaction))

    runtime._schedule_timer(f"round:{battle_id}", runtime.settings.round_transition_delay_ms, relaunch)


async def launch_weapon(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle = runtime.battles.require(require_text(payload, "battleId"))
    caller = require_text(payload, "teamLeaderAddress")
    weapon = resolve_weapon(payload.get("weapon"))
    if not weapon.weapon_id:
        raise ProtocolError("Missing field: weapon")
    targets_raw = payload.get("targetEnemies")
    targets = [str(t) for t in targets_raw] if isinstance(targets_raw, list) else None

    async with battle.lock:
        leader = runtime.battles.find_member(battle, caller)
        if leader is None or not leader.is_team_leader:
            raise PreconditionError("Only team leader can launch weapons", "NOT_AUTHORIZED")
        try:
            await execute_weapon_launch(runtime, battle, weapon, targets)
        except SettlementError as exc:
            # The requester gets the same error through the dispatcher.
            await runtime._broadcast_battle(
                battle,
                envelope("WAR_ERROR", code=exc.code, message=exc.message),
                exclude=websocket,
            )
            raise


async def personal_action(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle = runtime.battles.require(require_text(payload, "battleId"))
    address = require_text(payload, "playerAddress")
    action = payload.get("action")
    if not isinstance(action, dict) or not str(action.get("name") or "").strip():
        raise ProtocolError("Missing field: action")
    action_name = str(action["name"]).strip()
    cost = max(0.0, coerce_amount(action.get("cost")))
    transaction_hash = str(payload.get("transactionHash") or "").strip() or None

    async with battle.lock:
        battle, member, entry = runtime.battles.record_personal_action(
            battle.battle_id,
            address,
            action_name,
            cost,
            transaction_hash,
        )
        await runtime._broadcast_battle(
            battle,
            envelope(
                "WAR_PERSONAL_ACTION",
                action={"name": action_name, "cost": cost},
                player=member.address,
                teamMembers=serialize_members(battle),
                transaction=serialize_transaction(entry),
            ),
        )


async def revoke_permission(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle = runtime.battles.require(require_text(payload, "battleId"))
    address = require_text(payload, "playerAddress")
    async with battle.lock:
        battle, member, entry = runtime.battles.revoke_permission(battle.battle_id, address)
        await runtime._broadcast_battle(
            battle,
            envelope(
                "WAR_PERMISSION_REVOKED",
                player=member.address,
                teamMembers=serialize_members(battle),
                transaction=serialize_transaction(entry),
            ),
        )


async def grant_permission(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    battle = runtime.battles.require(require_text(payload, "battleId"))
    address = require_text(payload, "playerAddress")
    amount = coerce_amount(payload.get("amount"))
    if amount < 0:
        raise ProtocolError("Amount must not be negative")
    async with battle.lock:
        battle, member, entry = runtime.battles.grant_permission(battle.battle_id, address, amount)
        await runtime._broadcast_battle(
            battle,
            envelope(
                "WAR_PERMISSION_GRANTED",
                player=member.address,
                amount=amount,
                teamMembers=serialize_members(battle),
                transaction=serialize_transaction(entry),
            ),
        )


async def delegation_complete(runtime: "RelayRuntime", websocket: WebSocket, payload: dict[str, Any]) -> None:
    address = require_text(payload, "playerAddress")
    amount = max(0.0, coerce_amount(payload.get("amount")))
    transaction_hash = str(payload.get("transactionHash") or "").strip() or None

    updated = 0
    # Every battle holding this player is updated, one lock at a time.
    for battle in runtime.battles.battles_with_member(address):
        async with battle.lock:
            entry = runtime.battles.apply_delegation(battle, address, amount, transaction_hash)
            if entry is None:
                continue
            updated += 1
            await runtime._broadcast_battle(
                battle,
                envelope(
                    "WAR_DELEGATION_UPDATED",
                    player=address,
                    amount=amount,
                    teamMembers=serialize_members(battle),
                    transaction=serialize_transaction(entry),
                ),
            )
    logger.info("Updated %d battle(s) with delegation from %s", updated, short_address(address))
