"""
Player statistics providers.

The resolvers treat statistics as a black box behind `StatsProvider`. The
real feed lives outside this service; the deterministic provider derives
plausible statistics from the player id so resolution can run end to end
without it.
"""

from collections.abc import Mapping
from typing import Protocol

from matchbank.models.player import PlayerStats


class StatsProvider(Protocol):
    """Source of per-player statistics for one scoring period."""

    def get_stats(self, player_reference_id: str) -> PlayerStats:
        """Return statistics for the player, or zeroed stats if unknown."""

        ...


class DeterministicStatsProvider:
    """
    Pseudo-random statistics seeded from the player id.

    The same id always yields the same statistics. Thresholds control how
    often a player features, scores and gets booked.
    """

    def __init__(
        self,
        play_threshold: float = 0.15,
        goal_threshold: float = 0.7,
        assist_threshold: float = 0.75,
        yellow_threshold: float = 0.8,
        red_threshold: float | None = 0.95,
    ) -> None:
        self.play_threshold = play_threshold
        self.goal_threshold = goal_threshold
        self.assist_threshold = assist_threshold
        self.yellow_threshold = yellow_threshold
        self.red_threshold = red_threshold

    @staticmethod
    def _roll(player_reference_id: str) -> float:
        # Linear congruential step over the sum of character codes
        seed_base = sum(ord(c) for c in player_reference_id)
        seed = (seed_base * 9301 + 49297) % 233280
        return seed / 233280

    def get_stats(self, player_reference_id: str) -> PlayerStats:
        rng = self._roll(player_reference_id)
        red = self.red_threshold is not None and rng > self.red_threshold
        return PlayerStats(
            minutes_played=int(60 + rng * 30) if rng > self.play_threshold else 0,
            goals=int(rng * 2) if rng > self.goal_threshold else 0,
            assists=1 if rng > self.assist_threshold else 0,
            yellow_cards=1 if rng > self.yellow_threshold else 0,
            red_cards=1 if red else 0,
            clean_sheet=rng > 0.5,
            goals_conceded=0 if rng > 0.5 else int(rng * 3),
        )


def blitz_stats_provider() -> DeterministicStatsProvider:
    """Deterministic provider tuned for short-form blitz scoring."""
    return DeterministicStatsProvider(
        play_threshold=0.1,
        goal_threshold=0.65,
        assist_threshold=0.7,
        yellow_threshold=0.85,
        red_threshold=None,
    )


class MappingStatsProvider:
    """Statistics served from an in-memory mapping (imports, replays, tests)."""

    def __init__(self, stats: Mapping[str, PlayerStats]) -> None:
        self._stats = dict(stats)

    def get_stats(self, player_reference_id: str) -> PlayerStats:
        return self._stats.get(player_reference_id, PlayerStats())
