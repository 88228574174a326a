"""Deterministic tournament ranking.

Participants are ranked by step count DESC, then by join order (row id ASC).
Tied step counts get consecutive ranks, never shared ones, so every prize
rank maps to exactly one participant.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


def rank_participants(participants: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort participants and assign 1-indexed ranks.

    Input: list of dicts with at least:
        - id: int (participant row id, insertion order)
        - user_id: str
        - step_count: int

    Output: new list, sorted, each dict augmented with ``rank``.
    """
    ordered = sorted(participants, key=lambda p: (-p.get("step_count", 0), p.get("id", 0)))
    return [{**p, "rank": idx + 1} for idx, p in enumerate(ordered)]


def leaderboard_entry(participant: dict[str, Any]) -> dict[str, Any]:
    """Public snapshot of a ranked participant."""
    return {
        "user_id": participant["user_id"],
        "display_name": participant.get("display_name", ""),
        "photo_url": participant.get("photo_url", ""),
        "step_count": participant["step_count"],
        "rank": participant["rank"],
    }


def prize_for_rank(prizes: dict[str, Any] | None, rank: int) -> Decimal | None:
    """Configured prize for ``rank``, or None when the rank pays nothing."""
    if not prizes:
        return None
    raw = prizes.get(str(rank))
    if raw is None:
        return None
    amount = Decimal(str(raw))
    return amount if amount > 0 else None
