from __future__ import annotations

from fastapi import APIRouter, WebSocket

router = APIRouter(tags=["websocket"])


@router.websocket("/api/ws")
async def websocket_api(ws: WebSocket) -> None:
    await ws.app.state.runtime.handle_websocket(ws)


@router.websocket("/ws")
async def websocket_compat(ws: WebSocket) -> None:
    await ws.app.state.runtime.handle_websocket(ws)
