from __future__ import annotations

import logging
from typing import Literal

from .runtime_errors import NotFoundError, PreconditionError
from .runtime_types import BattleRuntime, WeaponVote
from .runtime_utils import coerce_amount, now_ms, same_address, short_address, votes_needed

logger = logging.getLogger(__name__)

VoteOutcome = Literal["passed", "failed"]


def propose(
    battle: BattleRuntime,
    *,
    weapon_id: str,
    weapon_name: str,
    weapon_cost: float,
    proposed_by: str,
    proposed_by_name: str | None,
    duration_ms: int,
    now: int | None = None,
) -> WeaponVote:
    if battle.phase == "victory":
        raise PreconditionError("The battle is already won", "BATTLE_OVER")
    if battle.active_vote is not None and battle.active_vote.status == "active":
        raise PreconditionError("There is already an active vote", "VOTE_ALREADY_ACTIVE")

    started_at = now if now is not None else now_ms()
    # The proposer does not vote implicitly; they cast YES like everyone else.
    vote = WeaponVote(
        vote_id=f"{weapon_id}_{started_at}",
        weapon_id=weapon_id,
        weapon_name=weapon_name,
        weapon_cost=max(0.0, coerce_amount(weapon_cost)),
        proposed_by=proposed_by,
        proposed_by_name=proposed_by_name,
        start_time=started_at,
        end_time=started_at + duration_ms,
    )
    battle.active_vote = vote
    logger.info(
        "Vote started: %s, need %d votes (%d players)",
        vote.vote_id,
        votes_needed(len(battle.team_members)),
        len(battle.team_members),
    )
    return vote


def require_active_vote(battle: BattleRuntime, vote_id: str) -> WeaponVote:
    vote = battle.active_vote
    if vote is None or vote.vote_id != vote_id or vote.status != "active":
        raise NotFoundError("Vote not found or expired", "VOTE_NOT_FOUND")
    return vote


def has_voted(vote: WeaponVote, address: str) -> bool:
    return any(same_address(a, address) for a in (*vote.votes, *vote.rejected_by))


def cast_vote(battle: BattleRuntime, vote_id: str, voter: str, approve: bool) -> bool:
    """Record a ballot. Returns False when this address already voted on the proposal."""
    vote = require_active_vote(battle, vote_id)
    if has_voted(vote, voter):
        logger.info("%s already voted on %s", short_address(voter), vote_id)
        return False
    if approve:
        vote.votes.append(voter)
    else:
        vote.rejected_by.append(voter)
    return True


def early_outcome(battle: BattleRuntime, vote: WeaponVote) -> VoteOutcome | None:
    needed = votes_needed(len(battle.team_members))
    if len(vote.votes) >= needed:
        return "passed"
    if len(vote.votes) + len(vote.rejected_by) >= len(battle.team_members):
        return "failed"
    return None


def begin_settlement(battle: BattleRuntime, vote_id: str) -> WeaponVote | None:
    """Settle a vote exactly once.

    Returns None when the vote is gone, replaced, or already settled, which is
    how the expiry timer and an early trigger resolve their race.
    """
    vote = battle.active_vote
    if vote is None or vote.vote_id != vote_id:
        logger.info("Vote %s already processed or replaced", vote_id)
        return None
    if vote.status != "active":
        logger.info("Vote %s already processed with status %s", vote_id, vote.status)
        return None

    vote.status = "processing"
    needed = votes_needed(len(battle.team_members))
    vote.status = "passed" if len(vote.votes) >= needed else "failed"
    logger.info(
        "Vote result: %s (%d/%d) players=%d",
        vote.status.upper(),
        len(vote.votes),
        needed,
        len(battle.team_members),
    )
    return vote


def clear_vote(battle: BattleRuntime, vote_id: str) -> bool:
    if battle.active_vote is not None and battle.active_vote.vote_id == vote_id:
        battle.active_vote = None
        return True
    return False
