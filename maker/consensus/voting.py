"""Vote tallying and the First-to-Ahead-by-K decision rule.

These helpers are strategy-independent: the sequential and both batched
strategies of the engine all record votes and decide through them.
"""

from __future__ import annotations

from maker.canonical import decode_key
from maker.schemas.consensus import ConsensusOutcome, VoteTally


def record_vote(tally: VoteTally, key: str) -> int:
    """Add one ballot to ``key`` and return its new count."""
    count = tally.counts.get(key, 0) + 1
    tally.counts[key] = count
    return count


def rank(tally: VoteTally) -> list[tuple[str, int]]:
    """Tally entries by count, highest first.

    The sort is stable, so keys with equal counts keep the order in which
    they first received a vote.
    """
    return sorted(tally.counts.items(), key=lambda kv: kv[1], reverse=True)


def leader_margin(tally: VoteTally) -> tuple[str | None, int, int, int]:
    """Return (leader key, leader count, runner-up count, margin).

    The runner-up count is 0 when fewer than two distinct keys exist.
    An empty tally has no leader and a margin of 0.
    """
    ranked = rank(tally)
    if not ranked:
        return None, 0, 0, 0
    leader_key, leader = ranked[0]
    runner_up = ranked[1][1] if len(ranked) > 1 else 0
    return leader_key, leader, runner_up, leader - runner_up


def is_decided(tally: VoteTally, k: int) -> bool:
    """Whether the leader is ahead of the runner-up by at least ``k``.

    Tied leaders have a margin of 0 and never satisfy ``k >= 1``.
    """
    leader_key, _, _, margin = leader_margin(tally)
    return leader_key is not None and margin >= k


def build_outcome(
    tally: VoteTally, *, attempts: int, flagged: int,
) -> ConsensusOutcome:
    """Build the outcome for a decided tally.

    Raises:
        ValueError: If the tally is empty.
    """
    leader_key, _, _, margin = leader_margin(tally)
    if leader_key is None:
        raise ValueError("Cannot build an outcome from an empty tally")
    return ConsensusOutcome(
        value=decode_key(leader_key),
        key=leader_key,
        margin=margin,
        attempts=attempts,
        votes=tally.total,
        flagged=flagged,
        counts=dict(tally.counts),
    )
