from __future__ import annotations

from .runtime_types import EnemyType, Weapon

MAX_LEDGER_ENTRIES = 10
FINAL_ROUND = 5
BOSS_ROUND_INTERVAL = 5
MIN_VOTES_NEEDED = 2
DEFAULT_WEAPON_DAMAGE = 100

WEAPON_CATALOG: dict[str, Weapon] = {
    weapon.weapon_id: weapon
    for weapon in (
        Weapon(weapon_id="molotov", name="Molotov Cocktail", cost=0.001, damage=150),
        Weapon(weapon_id="flamethrower", name="Flamethrower", cost=0.003, damage=300),
        Weapon(weapon_id="grenade", name="Grenade Launcher", cost=0.005, damage=500),
        Weapon(weapon_id="rocket", name="Rocket Launcher", cost=0.008, damage=800),
        Weapon(weapon_id="nuke", name="Nuclear Warhead", cost=0.015, damage=1500),
    )
}

# (base health, base damage, image)
ENEMY_BASE_STATS: dict[EnemyType, tuple[int, int, str]] = {
    "demogorgon": (300, 50, "/assets/enemies/demogorgan.png"),
    "mindflayer": (400, 75, "/assets/enemies/mindflayer.png"),
    "vecna": (800, 100, "/assets/enemies/vecna.png"),
}

DEFAULT_CHARACTERS: tuple[dict[str, str], ...] = (
    {"id": "eleven", "name": "Eleven", "image": "/assets/characters/eleven.png"},
    {"id": "steve", "name": "Steve Harrington", "image": "/assets/characters/steve.png"},
    {"id": "dustin", "name": "Dustin Henderson", "image": "/assets/characters/dustin.png"},
    {"id": "max", "name": "Max Mayfield", "image": "/assets/characters/max.png"},
    {"id": "mike", "name": "Mike Wheeler", "image": "/assets/characters/mike.png"},
    {"id": "lucas", "name": "Lucas Sinclair", "image": "/assets/characters/lucas.png"},
)

SETTLEMENT_HINT_MARKERS = ("execution reverted", "insufficient balance", "transfer failed")
SETTLEMENT_APPROVAL_HINT = (
    "Transaction failed! Every player needs enough WMANTLE and must approve the "
    "game payment contract (visit /wallet-setup to wrap MNT and approve)."
)
