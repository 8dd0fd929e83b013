from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay.api.router import api_router
from relay.config import Settings
from relay.runtime import RelayRuntime
from relay.settlement import SettlementGateway


def create_app(config: Settings | None = None, gateway: SettlementGateway | None = None) -> FastAPI:
    app = FastAPI(title="Stranger Things Battle Relay", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)
    app.state.runtime = RelayRuntime(config, gateway)

    @app.on_event("startup")
    async def on_startup() -> None:
        await app.state.runtime.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.runtime.shutdown()

    return app
