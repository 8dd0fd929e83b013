from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class InitializeBattleRequest(BaseModel):
    teamLeaderAddress: str = Field(min_length=1, max_length=128)
    selectedCharacter: dict[str, Any] | None = None
    roomCode: str | None = Field(default=None, max_length=32)
    currentRoom: dict[str, Any] | None = None
    characterSelections: dict[str, dict[str, Any]] | None = None

    @field_validator("teamLeaderAddress")
    @classmethod
    def strip_address(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("teamLeaderAddress is required")
        return value


class FindBattleRequest(BaseModel):
    teamLeaderAddress: str = Field(min_length=1, max_length=128)


class ConnectBattleRequest(BaseModel):
    playerAddress: str = Field(min_length=1, max_length=128)
