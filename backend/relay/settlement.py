from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Protocol
from urllib import error, request

from .config import Settings
from .runtime_constants import SETTLEMENT_APPROVAL_HINT, SETTLEMENT_HINT_MARKERS
from .runtime_errors import SettlementError

logger = logging.getLogger(__name__)


class SettlementGateway(Protocol):
    async def purchase_weapon(self, players: list[str], cost_per_player: float) -> str:
        """Pull ``cost_per_player`` from every player and return the transaction reference."""
        ...


def settlement_error_message(raw: str) -> str:
    lowered = raw.lower()
    if any(marker in lowered for marker in SETTLEMENT_HINT_MARKERS):
        return SETTLEMENT_APPROVAL_HINT
    return f"Transaction failed: {raw}"


class HttpSettlementGateway:
    def __init__(self, base_url: str, api_key: str = "", timeout_seconds: float = 45) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def _post_purchase(self, players: list[str], cost_per_player: float) -> dict[str, Any]:
        body = {
            "players": players,
            "costPerPlayer": f"{cost_per_player:.18f}".rstrip("0").rstrip("."),
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        raw_request = request.Request(
            f"{self.base_url}/purchase-weapon",
            data=json.dumps(body).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with request.urlopen(raw_request, timeout=self.timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8") or "{}")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore")
            raise SettlementError(settlement_error_message(f"HTTP {exc.code}: {detail[:300]}")) from exc
        except Exception as exc:
            raise SettlementError(settlement_error_message(str(exc))) from exc

        if not isinstance(payload, dict):
            raise SettlementError(settlement_error_message("settlement service returned a non-object"))
        if payload.get("error"):
            raise SettlementError(settlement_error_message(str(payload["error"])[:300]))
        return payload

    async def purchase_weapon(self, players: list[str], cost_per_player: float) -> str:
        logger.info(
            "settlement.purchase players=%d cost_per_player=%s",
            len(players),
            cost_per_player,
        )
        payload = await asyncio.to_thread(self._post_purchase, players, cost_per_player)
        tx_hash = str(payload.get("transactionHash") or payload.get("hash") or "").strip()
        if not tx_hash:
            raise SettlementError(settlement_error_message("settlement service returned no transaction hash"))
        logger.info("settlement.confirmed tx=%s", tx_hash)
        return tx_hash


class LedgerOnlySettlementGateway:
    """Accepts every purchase without an external call. Used when no settlement URL is configured."""

    async def purchase_weapon(self, players: list[str], cost_per_player: float) -> str:
        reference = f"local_{uuid.uuid4().hex}"
        logger.debug(
            "settlement.ledger_only players=%d cost_per_player=%s ref=%s",
            len(players),
            cost_per_player,
            reference,
        )
        return reference


def build_gateway(config: Settings) -> SettlementGateway:
    if config.settlement_url:
        return HttpSettlementGateway(
            config.settlement_url,
            api_key=config.settlement_api_key,
            timeout_seconds=config.settlement_timeout_seconds,
        )
    logger.warning("SETTLEMENT_URL is not set; weapon purchases are recorded in the ledger only")
    return LedgerOnlySettlementGateway()
