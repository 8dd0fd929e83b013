from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from relay.api.deps import get_runtime
from relay.runtime import RelayRuntime
from relay.runtime_snapshot import serialize_invitation, serialize_room
from relay.runtime_utils import sanitize_room_code

router = APIRouter(tags=["rooms"])


@router.get("/api/rooms")
async def list_rooms(runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, object]:
    async with runtime.rooms_lock:
        rooms = [serialize_room(room) for room in runtime.rooms.rooms.values()]
    return {
        "success": True,
        "rooms": rooms,
        "totalRooms": len(rooms),
    }


@router.get("/api/rooms/{code}")
async def room_by_code(code: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, object]:
    async with runtime.rooms_lock:
        room = runtime.rooms.get(sanitize_room_code(code))
        if room is None:
            raise HTTPException(status_code=404, detail="Room not found")
        return {"success": True, "room": serialize_room(room)}


@router.get("/api/invitations/{address}")
async def pending_invitations(address: str, runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, object]:
    async with runtime.rooms_lock:
        invitations = runtime.invitations.pending_for(address)
        return {
            "success": True,
            "invitations": [serialize_invitation(invitation) for invitation in invitations],
        }
