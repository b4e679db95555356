"""Leaderboard ordering over all saved sessions of a post.

Players are ordered by descending total score. Equal scores are broken by the
earliest session creation, then by user id, so re-querying an unchanged set of
sessions always yields the same ranks.
"""
from typing import List, Mapping, Optional

from models import LeaderboardEntry, PlayerSession


def _sort_key(item):
    user_id, session = item
    return (-session.total_score, session.created_at, user_id)


def build_leaderboard(sessions: Mapping[str, PlayerSession]) -> List[LeaderboardEntry]:
    ordered = sorted(sessions.items(), key=_sort_key)
    return [
        LeaderboardEntry(
            user_id=user_id,
            username=session.username,
            total_score=session.total_score,
            rank=i + 1,
        )
        for i, (user_id, session) in enumerate(ordered)
    ]


def player_rank(sessions: Mapping[str, PlayerSession], user_id: Optional[str]) -> Optional[int]:
    """1-based rank of a user, or None when the user has no session."""
    if not user_id or user_id not in sessions:
        return None
    for entry in build_leaderboard(sessions):
        if entry.user_id == user_id:
            return entry.rank
    return None
