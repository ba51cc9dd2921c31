"""Tests for player statistics providers and the player pool."""

import random

from matchbank.models.db import PlayerReferenceDB
from matchbank.models.enums import Position
from matchbank.models.player import PlayerStats
from matchbank.services.player_pool import DatabasePlayerPool
from matchbank.services.stats_provider import (
    DeterministicStatsProvider,
    MappingStatsProvider,
    blitz_stats_provider,
)

PLAYER_IDS = [f"player-{i}" for i in range(40)]


class TestDeterministicStatsProvider:
    def test_same_id_same_stats(self) -> None:
        """Statistics are a pure function of the player id."""
        provider = DeterministicStatsProvider()

        for player_id in PLAYER_IDS:
            assert provider.get_stats(player_id) == provider.get_stats(player_id)

    def test_known_value(self) -> None:
        """'p1' rolls ~0.63: plays 78 minutes with a clean sheet and nothing else."""
        stats = DeterministicStatsProvider().get_stats("p1")

        assert stats == PlayerStats(minutes_played=78, clean_sheet=True)

    def test_players_who_feature_play_at_least_an_hour(self) -> None:
        """Minutes are either 0 or within 60-90."""
        provider = DeterministicStatsProvider()

        for player_id in PLAYER_IDS:
            minutes = provider.get_stats(player_id).minutes_played
            assert minutes == 0 or 60 <= minutes <= 90

    def test_blitz_provider_never_shows_red(self) -> None:
        """The blitz variant disables red cards."""
        provider = blitz_stats_provider()

        assert all(provider.get_stats(p).red_cards == 0 for p in PLAYER_IDS)


class TestMappingStatsProvider:
    def test_returns_mapped_stats(self) -> None:
        stats = PlayerStats(minutes_played=90, goals=2)
        provider = MappingStatsProvider({"striker": stats})

        assert provider.get_stats("striker") == stats

    def test_unknown_player_did_not_play(self) -> None:
        """Players missing from the feed score as absent."""
        provider = MappingStatsProvider({})

        assert provider.get_stats("ghost").minutes_played == 0


class TestDatabasePlayerPool:
    async def test_empty_pool(self, session) -> None:
        """No references means no players."""
        pool = DatabasePlayerPool()

        assert await pool.sample(session, 3) == []

    async def test_draws_with_replacement(self, session) -> None:
        """More draws than references is fine: players repeat."""
        session.add(PlayerReferenceDB(id="only", name="Solo", club="FC", position="FWD"))
        await session.flush()
        pool = DatabasePlayerPool(rng=random.Random(1))

        players = await pool.sample(session, 4)

        assert [p.id for p in players] == ["only"] * 4
        assert players[0].position is Position.FWD

    async def test_sample_size_bounds_candidates(self, session) -> None:
        """Only the first `sample_size` references by id are eligible."""
        session.add_all(
            [
                PlayerReferenceDB(id="a", name="A", position="GK"),
                PlayerReferenceDB(id="b", name="B", position="DEF"),
                PlayerReferenceDB(id="c", name="C", position="MID"),
            ]
        )
        await session.flush()
        pool = DatabasePlayerPool(sample_size=1, rng=random.Random(3))

        players = await pool.sample(session, 10)

        assert {p.id for p in players} == {"a"}

    async def test_zero_draws(self, session) -> None:
        pool = DatabasePlayerPool()

        assert await pool.sample(session, 0) == []
