from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from relay.api.deps import get_runtime, http_error
from relay.runtime import RelayRuntime
from relay.runtime_errors import RelayError
from relay.runtime_snapshot import serialize_battle
from relay.runtime_war_flow import initialize_battle
from relay.schemas.battles import ConnectBattleRequest, FindBattleRequest, InitializeBattleRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/war-battle", tags=["battles"])


@router.post("/initialize")
async def initialize(
    body: InitializeBattleRequest,
    runtime: RelayRuntime = Depends(get_runtime),
) -> dict[str, object]:
    try:
        battle = await initialize_battle(
            runtime,
            body.teamLeaderAddress,
            character=body.selectedCharacter,
            room_code=body.roomCode,
            current_room=body.currentRoom,
            character_selections=body.characterSelections,
        )
    except RelayError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "battleId": battle.battle_id,
        "battle": serialize_battle(battle),
    }


@router.post("/find")
async def find_by_leader(
    body: FindBattleRequest,
    runtime: RelayRuntime = Depends(get_runtime),
) -> dict[str, object]:
    battle = runtime.battles.find_battle_by_leader(body.teamLeaderAddress)
    if battle is None:
        logger.info("No battle found for team leader %s", body.teamLeaderAddress)
        raise HTTPException(status_code=404, detail="Battle not found")
    return {
        "success": True,
        "battleId": battle.battle_id,
        "battle": serialize_battle(battle),
    }


@router.get("/{battle_id}")
async def battle_by_id(battle_id: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, object]:
    battle = runtime.battles.get(battle_id)
    if battle is None:
        raise HTTPException(status_code=404, detail="Battle not found")
    return {"success": True, "battle": serialize_battle(battle)}


@router.post("/{battle_id}/connect")
async def prepare_connect(
    battle_id: str,
    body: ConnectBattleRequest,
    runtime: RelayRuntime = Depends(get_runtime),
) -> dict[str, object]:
    try:
        battle, _ = runtime.battles.require_member(battle_id, body.playerAddress)
    except RelayError as exc:
        raise http_error(exc) from exc
    return {
        "success": True,
        "message": "Ready to connect to battle WebSocket",
        "battleId": battle.battle_id,
        "wsPort": runtime.settings.ws_port,
    }
