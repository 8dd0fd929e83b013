from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from relay.api.deps import get_runtime
from relay.runtime import RelayRuntime
from relay.runtime_utils import now_ms

router = APIRouter(tags=["system"])


@router.get("/health")
@router.get("/api/health")
async def health(runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, object]:
    ws_stats = await runtime.get_ws_stats()
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptimeSeconds": max(0, now_ms() - runtime.started_at_ms) // 1000,
        "activeRooms": ws_stats["activeRooms"],
        "activeBattles": ws_stats["activeBattles"],
        "websocket": {
            "activeConnections": ws_stats["stats"].get("activeConnections", 0),
            "peakConnections": ws_stats["stats"].get("peakConnections", 0),
        },
    }


@router.get("/api/ws-stats")
async def websocket_stats(runtime: RelayRuntime = Depends(get_runtime)) -> dict[str, object]:
    return await runtime.get_ws_stats()
