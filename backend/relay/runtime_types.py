from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal

EnemyType = Literal["demogorgon", "mindflayer", "vecna"]
BattlePhase = Literal["battle", "victory"]
VoteStatus = Literal["active", "processing", "passed", "failed"]
RoundOutcome = Literal["in_progress", "round_complete", "victory"]
ChannelScope = Literal["room", "selection", "battle"]


@dataclass
class RoomPlayer:
    address: str
    display_name: str
    is_host: bool = False
    is_ready: bool = False
    joined_at: str = ""


@dataclass
class RoomRuntime:
    code: str
    name: str
    host: str
    players: list[RoomPlayer] = field(default_factory=list)
    max_players: int = 4
    created_at: str = ""
    room_id: str = ""
    is_private: bool = False
    game_mode: str = "multiplayer"


@dataclass
class RoomDeparture:
    room: RoomRuntime
    player: RoomPlayer
    room_deleted: bool = False
    new_host: RoomPlayer | None = None


@dataclass
class JoinOutcome:
    room: RoomRuntime
    player: RoomPlayer
    reconnected: bool = False
    departures: list[RoomDeparture] = field(default_factory=list)


@dataclass
class CharacterChoice:
    address: str
    character: dict[str, Any]
    selected_at: str


@dataclass
class SelectionSession:
    room_code: str
    players: dict[str, str] = field(default_factory=dict)
    selections: dict[str, CharacterChoice] = field(default_factory=dict)
    ready_addresses: set[str] = field(default_factory=set)


@dataclass
class Invitation:
    invite_id: str
    room_code: str
    room_name: str
    invite_address: str
    inviter_address: str
    inviter_name: str | None
    created_at_ms: int
    expires_at_ms: int


@dataclass
class TeamMember:
    address: str
    display_name: str
    character_name: str
    character_image: str
    is_team_leader: bool = False
    delegated_amount: float = 0.0
    spent_amount: float = 0.0
    is_active: bool = True
    last_action: str = ""


@dataclass
class Enemy:
    enemy_id: str
    type: EnemyType
    health: int
    max_health: int
    damage: int
    position: dict[str, int]
    image: str
    is_destroyed: bool = False


@dataclass
class Weapon:
    weapon_id: str
    name: str
    cost: float
    damage: int


@dataclass
class SpendShare:
    address: str
    amount: float


@dataclass
class LedgerEntry:
    entry_id: str
    weapon: str
    cost: float
    spent_from: list[SpendShare]
    timestamp: str
    success: bool = True
    transaction_hash: str | None = None


@dataclass
class WeaponVote:
    vote_id: str
    weapon_id: str
    weapon_name: str
    weapon_cost: float
    proposed_by: str
    proposed_by_name: str | None
    start_time: int
    end_time: int
    votes: list[str] = field(default_factory=list)
    rejected_by: list[str] = field(default_factory=list)
    status: VoteStatus = "active"


@dataclass
class BattleRuntime:
    battle_id: str
    team_leader_address: str
    team_members: list[TeamMember]
    enemies: list[Enemy]
    transactions: list[LedgerEntry] = field(default_factory=list)
    phase: BattlePhase = "battle"
    round: int = 1
    active_vote: WeaponVote | None = None
    created_at: str = ""
    created_seq: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class ChannelState:
    address: str | None = None
    room_code: str | None = None
    battle_id: str | None = None
    selection_room: str | None = None
