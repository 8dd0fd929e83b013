from __future__ import annotations

import pytest

from relay.battle_store import BattleStore
from relay.combat import (
    apply_weapon_damage,
    generate_round_enemies,
    is_boss_round,
    resolve_round,
    resolve_weapon,
    split_cost,
)


def test_first_round_is_three_demogorgons():
    enemies = generate_round_enemies(1)

    assert [e.type for e in enemies] == ["demogorgon"] * 3
    assert [e.health for e in enemies] == [300, 300, 300]
    assert all(e.max_health == e.health for e in enemies)


def test_second_round_scales_health():
    enemies = generate_round_enemies(2)

    assert len(enemies) == 4
    assert {e.health for e in enemies} == {390}


def test_final_round_ends_with_vecna():
    enemies = generate_round_enemies(5)

    assert is_boss_round(5)
    assert len(enemies) == 5
    assert enemies[-1].type == "vecna"
    assert enemies[-1].health == 1760
    assert [e.type for e in enemies[:-1]] == ["mindflayer", "demogorgon", "mindflayer", "demogorgon"]


def test_known_weapon_damage_comes_from_catalog():
    weapon = resolve_weapon({"id": "rocket", "name": "Rocket", "cost": 0.01, "damage": 1})

    assert weapon.damage == 800
    assert weapon.cost == pytest.approx(0.01)


def test_unknown_weapon_falls_back():
    assert resolve_weapon({"id": "slingshot"}).damage == 100
    assert resolve_weapon({"id": "slingshot", "damage": 42}).damage == 42


def test_targeted_damage_only_hits_targets():
    enemies = generate_round_enemies(1)

    apply_weapon_damage(enemies, 500, targets=[enemies[0].enemy_id])

    assert enemies[0].health == 0
    assert enemies[0].is_destroyed
    assert [e.health for e in enemies[1:]] == [300, 300]


def test_cost_is_split_evenly_among_active_members():
    battle = BattleStore().initialize_battle("0xSolo")

    shares = split_cost(battle.team_members, 0.003)

    assert [s.amount for s in shares] == [pytest.approx(0.003)]
    assert split_cost([], 1.0) == []


def test_clearing_a_round_advances_it():
    battle = BattleStore().initialize_battle("0xSolo")
    apply_weapon_damage(battle.enemies, 1000)

    assert resolve_round(battle) == "round_complete"
    assert battle.round == 2
    assert len(battle.enemies) == 4


def test_clearing_final_round_is_victory():
    battle = BattleStore().initialize_battle("0xSolo")
    battle.round = 5
    battle.enemies = generate_round_enemies(5)
    apply_weapon_damage(battle.enemies, 5000)

    assert resolve_round(battle) == "victory"
    assert battle.phase == "victory"
    assert battle.round == 5


def test_partial_damage_keeps_round_in_progress():
    battle = BattleStore().initialize_battle("0xSolo")
    apply_weapon_damage(battle.enemies, 150)

    assert resolve_round(battle) == "in_progress"
    assert battle.round == 1
