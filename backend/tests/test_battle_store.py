from __future__ import annotations

import pytest

from relay.battle_store import BattleStore
from relay.runtime_errors import NotFoundError
from relay.runtime_types import RoomPlayer


def players(*addresses: str) -> list[RoomPlayer]:
    return [RoomPlayer(address=a, display_name=a[-3:]) for a in addresses]


def test_solo_battle_has_a_leader_with_chosen_character():
    store = BattleStore()

    battle = store.initialize_battle("0xSolo", {"name": "Max Mayfield", "image": "/max.png"})

    assert battle.battle_id.startswith("war_")
    [member] = battle.team_members
    assert member.is_team_leader
    assert member.character_name == "Max Mayfield"
    assert battle.transactions[0].weapon == "BATTLE_INITIALIZED"
    assert len(battle.enemies) == 3


def test_solo_battle_defaults_to_eleven():
    battle = BattleStore().initialize_battle("0xSolo")

    assert battle.team_members[0].character_name == "Eleven"


def test_multiplayer_team_uses_selections_and_defaults():
    store = BattleStore()

    battle = store.initialize_battle(
        "0xA",
        room_players=players("0xA", "0xB", "0xC"),
        selections={"0XB": {"name": "Dustin Henderson", "image": "/dustin.png"}},
    )

    names = [m.character_name for m in battle.team_members]
    assert names == ["Eleven", "Dustin Henderson", "Dustin Henderson"]
    assert not any(m.is_team_leader for m in battle.team_members)


def test_find_by_leader_returns_newest():
    store = BattleStore()
    store.initialize_battle("0xLead")
    newest = store.initialize_battle("0xLEAD")

    assert store.find_battle_by_leader("0xlead") is newest
    assert store.find_battle_by_leader("0xNobody") is None


def test_ledger_keeps_ten_newest_entries():
    store = BattleStore()
    battle = store.initialize_battle("0xSolo")

    for index in range(12):
        store.record_transaction(battle, f"weapon-{index}", cost=0.001)

    assert len(battle.transactions) == 10
    assert battle.transactions[0].weapon == "weapon-11"


def test_revoke_and_grant_toggle_activity():
    store = BattleStore()
    battle = store.initialize_battle("0xA", room_players=players("0xA", "0xB"))

    _, member, entry = store.revoke_permission(battle.battle_id, "0xB")
    assert not member.is_active
    assert entry.weapon == "PERMISSION_REVOKED"

    _, member, entry = store.grant_permission(battle.battle_id, "0xB", 0.5)
    assert member.is_active
    assert member.delegated_amount == pytest.approx(0.5)
    assert entry.weapon == "PERMISSION_GRANTED"


def test_delegation_skips_leaders():
    store = BattleStore()
    solo = store.initialize_battle("0xA")
    team = store.initialize_battle("0xA", room_players=players("0xA", "0xB"))

    assert store.apply_delegation(solo, "0xA", 1.0, "0xtx") is None
    entry = store.apply_delegation(team, "0xA", 1.0, "0xtx")

    assert entry is not None
    assert entry.transaction_hash == "0xtx"
    assert team.team_members[0].delegated_amount == 1.0


def test_non_member_is_rejected():
    store = BattleStore()
    battle = store.initialize_battle("0xA")

    with pytest.raises(NotFoundError) as excinfo:
        store.require_member(battle.battle_id, "0xB")
    assert excinfo.value.code == "NOT_IN_BATTLE"

    with pytest.raises(NotFoundError) as excinfo:
        store.require("war_missing")
    assert excinfo.value.code == "BATTLE_NOT_FOUND"
