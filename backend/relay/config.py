from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default
    return max(minimum, value)


class Settings:
    def __init__(self) -> None:
        self.ws_port = _int_env("WS_PORT", 3001, minimum=1)
        self.log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
        self.default_max_players = _int_env("DEFAULT_MAX_PLAYERS", 4, minimum=1)

        self.disconnect_grace_ms = _int_env("DISCONNECT_GRACE_MS", 30_000)
        self.join_broadcast_delay_ms = _int_env("JOIN_BROADCAST_DELAY_MS", 100)
        self.vote_duration_ms = _int_env("VOTE_DURATION_MS", 10_000, minimum=1)
        self.vote_clear_delay_ms = _int_env("VOTE_CLEAR_DELAY_MS", 1_000)
        self.round_transition_delay_ms = _int_env("ROUND_TRANSITION_DELAY_MS", 3_000)
        self.selection_cleanup_delay_ms = _int_env("SELECTION_CLEANUP_DELAY_MS", 5_000)
        self.invitation_ttl_ms = _int_env("INVITATION_TTL_MS", 30 * 60 * 1000, minimum=1)
        self.invitation_sweep_interval_ms = _int_env(
            "INVITATION_SWEEP_INTERVAL_MS",
            5 * 60 * 1000,
            minimum=1_000,
        )

        self.settlement_url = os.getenv("SETTLEMENT_URL", "").strip().rstrip("/")
        self.settlement_api_key = os.getenv("SETTLEMENT_API_KEY", "").strip()
        self.settlement_timeout_seconds = _int_env("SETTLEMENT_TIMEOUT_SECONDS", 45, minimum=1)


settings = Settings()
