from __future__ import annotations

import logging
from typing import Any, Iterable

from .runtime_constants import (
    BOSS_ROUND_INTERVAL,
    DEFAULT_WEAPON_DAMAGE,
    ENEMY_BASE_STATS,
    FINAL_ROUND,
    WEAPON_CATALOG,
)
from .runtime_types import BattleRuntime, Enemy, EnemyType, RoundOutcome, SpendShare, TeamMember, Weapon
from .runtime_utils import coerce_amount

logger = logging.getLogger(__name__)


def is_boss_round(round_number: int) -> bool:
    return round_number == FINAL_ROUND or round_number % BOSS_ROUND_INTERVAL == 0


def _enemy_type_for_slot(round_number: int, index: int, enemy_count: int) -> EnemyType:
    if is_boss_round(round_number):
        if index == enemy_count - 1:
            return "vecna"
        return "mindflayer" if index % 2 == 0 else "demogorgon"
    if index == 0 and round_number >= 3:
        return "mindflayer"
    return "demogorgon"


def generate_round_enemies(round_number: int) -> list[Enemy]:
    """Build the wave for a round. Depends on the round number only."""
    health_multiplier = 1 + (round_number - 1) * 0.3
    damage_multiplier = 1 + (round_number - 1) * 0.2
    enemy_count = min(3 + round_number // 2, 5)

    enemies: list[Enemy] = []
    for index in range(enemy_count):
        enemy_type = _enemy_type_for_slot(round_number, index, enemy_count)
        base_health, base_damage, image = ENEMY_BASE_STATS[enemy_type]
        health = int(base_health * health_multiplier)
        enemies.append(
            Enemy(
                enemy_id=f"{enemy_type}_{round_number}_{index}",
                type=enemy_type,
                health=health,
                max_health=health,
                damage=int(base_damage * damage_multiplier),
                position={"x": 500 + index * 60, "y": 200 + index * 40},
                image=image,
            )
        )

    logger.info(
        "Generated %d enemies for round %d: %s",
        len(enemies),
        round_number,
        ", ".join(f"{e.type}({e.health}HP)" for e in enemies),
    )
    return enemies


def weapon_damage(weapon_id: str, fallback: int | None = None) -> int:
    weapon = WEAPON_CATALOG.get(weapon_id)
    if weapon is not None:
        return weapon.damage
    return fallback if fallback is not None else DEFAULT_WEAPON_DAMAGE


def resolve_weapon(raw: Any) -> Weapon:
    """Weapon from a client payload; damage comes from the catalog when the id is known."""
    data = raw if isinstance(raw, dict) else {}
    weapon_id = str(data.get("id") or data.get("weaponId") or "").strip()
    catalog_entry = WEAPON_CATALOG.get(weapon_id)
    fallback_damage: int | None = None
    if data.get("damage") is not None:
        fallback_damage = max(0, int(coerce_amount(data.get("damage"))))
    return Weapon(
        weapon_id=weapon_id,
        name=str(data.get("name") or (catalog_entry.name if catalog_entry else weapon_id) or "Weapon"),
        cost=max(0.0, coerce_amount(data.get("cost"), catalog_entry.cost if catalog_entry else 0.0)),
        damage=weapon_damage(weapon_id, fallback_damage),
    )


def apply_weapon_damage(enemies: list[Enemy], damage: int, targets: Iterable[str] | None = None) -> None:
    target_ids = {str(t) for t in targets or () if t}
    for enemy in enemies:
        if target_ids and enemy.enemy_id not in target_ids:
            continue
        enemy.health = max(0, enemy.health - damage)
        if enemy.health <= 0:
            enemy.is_destroyed = True


def active_members(battle: BattleRuntime) -> list[TeamMember]:
    return [member for member in battle.team_members if member.is_active]


def split_cost(members: list[TeamMember], cost: float) -> list[SpendShare]:
    if not members:
        return []
    per_member = cost / len(members)
    return [SpendShare(address=member.address, amount=per_member) for member in members]


def charge_members(battle: BattleRuntime, spending: list[SpendShare], weapon_name: str) -> None:
    by_address = {member.address: member for member in battle.team_members}
    for share in spending:
        member = by_address.get(share.address)
        if member is None:
            continue
        member.spent_amount += share.amount
        member.last_action = f"Contributed {share.amount:.3f} WMANTLE for {weapon_name}"


def resolve_round(battle: BattleRuntime) -> RoundOutcome:
    if not all(enemy.health <= 0 for enemy in battle.enemies):
        return "in_progress"

    logger.info("All enemies destroyed in round %d of battle %s", battle.round, battle.battle_id)
    if battle.round >= FINAL_ROUND:
        battle.phase = "victory"
        return "victory"

    battle.round += 1
    battle.enemies = generate_round_enemies(battle.round)
    return "round_complete"
