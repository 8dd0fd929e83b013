from __future__ import annotations

import asyncio
from typing import Any

import pytest
from starlette.websockets import WebSocketState

from relay.config import Settings
from relay.runtime import RelayRuntime


class FakeWebSocket:
    def __init__(self, name: str = "ws") -> None:
        self.name = name
        self.client = None
        self.client_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.client_state != WebSocketState.CONNECTED:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.client_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    def last(self, message_type: str) -> dict[str, Any]:
        for message in reversed(self.sent):
            if message["type"] == message_type:
                return message["payload"]
        raise AssertionError(f"{self.name} never received {message_type}: {self.types()}")


class FakeGateway:
    def __init__(self, tx_hash: str = "0xfeed") -> None:
        self.tx_hash = tx_hash
        self.calls: list[tuple[list[str], float]] = []

    async def purchase_weapon(self, players: list[str], cost_per_player: float) -> str:
        self.calls.append((list(players), cost_per_player))
        return self.tx_hash


class FailingGateway(FakeGateway):
    async def purchase_weapon(self, players: list[str], cost_per_player: float) -> str:
        self.calls.append((list(players), cost_per_player))
        raise RuntimeError("execution reverted: ERC20 insufficient balance")


@pytest.fixture
def fast_settings() -> Settings:
    config = Settings()
    config.disconnect_grace_ms = 30
    config.join_broadcast_delay_ms = 0
    config.vote_duration_ms = 5_000
    config.vote_clear_delay_ms = 10
    config.round_transition_delay_ms = 10
    config.selection_cleanup_delay_ms = 10
    config.invitation_ttl_ms = 60_000
    config.settlement_url = ""
    return config


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def runtime(fast_settings: Settings, gateway: FakeGateway):
    relay_runtime = RelayRuntime(fast_settings, gateway)
    yield relay_runtime
    await relay_runtime.shutdown()


@pytest.fixture
def make_ws():
    def factory(name: str = "ws") -> FakeWebSocket:
        return FakeWebSocket(name)

    return factory


@pytest.fixture
def failing_gateway() -> FailingGateway:
    return FailingGateway()


class SlowGateway(FakeGateway):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def purchase_weapon(self, players: list[str], cost_per_player: float) -> str:
        self.calls.append((list(players), cost_per_player))
        await self.release.wait()
        return self.tx_hash


@pytest.fixture
def slow_gateway() -> SlowGateway:
    return SlowGateway()
