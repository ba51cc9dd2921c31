"""
Tests for the scoring engine.

INVARIANTS:
- A player with 0 minutes scores 0
- Clean sheet and goals-conceded rules apply to GK/DEF only
- A 0-minute starter is replaced by the first same-position bench player
  who played, else the first bench player of any position who played
- A bench player substitutes at most once
- The captain's points double after substitutions
"""

from matchbank.models.enums import Position
from matchbank.models.player import PlayerStats
from matchbank.services.scoring import (
    SlotInput,
    calculate_points,
    score_blitz_lineup,
    score_lineup,
)
from matchbank.services.stats_provider import MappingStatsProvider

FULL_GAME = 90


def slot(position_slot: int, card_id: str, position: Position) -> SlotInput:
    return SlotInput(
        position_slot=position_slot,
        card_id=card_id,
        player_reference_id=f"ref-{card_id}",
        position=position,
    )


class TestCalculatePoints:
    def test_did_not_play_scores_zero(self) -> None:
        """Zero minutes scores nothing, even with goals recorded."""
        stats = PlayerStats(minutes_played=0, goals=3, clean_sheet=True)

        assert calculate_points(Position.FWD, stats) == 0

    def test_midfielder_goal(self) -> None:
        """Presence plus one midfielder goal is 7."""
        stats = PlayerStats(minutes_played=FULL_GAME, goals=1)

        assert calculate_points(Position.MID, stats) == 7

    def test_goal_values_by_position(self) -> None:
        """Goals are worth 6 for GK/DEF, 5 for MID and 4 for FWD."""
        stats = PlayerStats(minutes_played=FULL_GAME, goals=1)

        assert calculate_points(Position.GK, stats) == 8
        assert calculate_points(Position.DEF, stats) == 8
        assert calculate_points(Position.MID, stats) == 7
        assert calculate_points(Position.FWD, stats) == 6

    def test_short_appearance_has_no_presence_bonus(self) -> None:
        """Under 60 minutes earns no presence points and no clean sheet."""
        stats = PlayerStats(minutes_played=45, clean_sheet=True, assists=1)

        assert calculate_points(Position.DEF, stats) == 3

    def test_clean_sheet_for_defender(self) -> None:
        """A full-game defender with a clean sheet gets 2 + 4."""
        stats = PlayerStats(minutes_played=FULL_GAME, clean_sheet=True)

        assert calculate_points(Position.DEF, stats) == 6

    def test_clean_sheet_ignored_for_attackers(self) -> None:
        """Midfielders and forwards get nothing for a clean sheet."""
        stats = PlayerStats(minutes_played=FULL_GAME, clean_sheet=True)

        assert calculate_points(Position.MID, stats) == 2
        assert calculate_points(Position.FWD, stats) == 2

    def test_goals_conceded_penalty(self) -> None:
        """Goalkeepers lose a point per two goals conceded."""
        stats = PlayerStats(minutes_played=FULL_GAME, goals_conceded=5)

        assert calculate_points(Position.GK, stats) == 0
        assert calculate_points(Position.FWD, stats) == 2

    def test_cards(self) -> None:
        """Yellow is -1, red is -3."""
        stats = PlayerStats(minutes_played=FULL_GAME, yellow_cards=1, red_cards=1)

        assert calculate_points(Position.MID, stats) == -2

    def test_unknown_position_string_scores_as_midfielder(self) -> None:
        """Positions that do not parse fall back to MID."""
        stats = PlayerStats(minutes_played=FULL_GAME, goals=1)

        assert calculate_points("WINGBACK", stats) == 7
        assert calculate_points("DEF", stats) == 8


class TestScoreLineup:
    def test_zero_minute_midfielder_substituted(self) -> None:
        """A bench MID who scored replaces the absent starting MID for 7."""
        provider = MappingStatsProvider(
            {
                "ref-starter": PlayerStats(minutes_played=0),
                "ref-bench": PlayerStats(minutes_played=FULL_GAME, goals=1),
            }
        )
        slots = [slot(1, "starter", Position.MID), slot(12, "bench", Position.MID)]

        result = score_lineup(slots, captain_card_id=None, stats_provider=provider)

        assert result.points["starter"] == 0
        assert result.points["bench"] == 7
        assert result.total == 7
        assert result.subbed_in == {"bench"}

    def test_same_position_preferred_over_bench_order(self) -> None:
        """A later same-position bench player beats an earlier one of another position."""
        provider = MappingStatsProvider(
            {
                "ref-def": PlayerStats(minutes_played=0),
                "ref-bench-mid": PlayerStats(minutes_played=FULL_GAME),
                "ref-bench-def": PlayerStats(minutes_played=FULL_GAME, clean_sheet=True),
            }
        )
        slots = [
            slot(1, "def", Position.DEF),
            slot(12, "bench-mid", Position.MID),
            slot(13, "bench-def", Position.DEF),
        ]

        result = score_lineup(slots, None, provider)

        assert len(result.substitutions) == 1
        sub = result.substitutions[0]
        assert sub.bench_card_id == "bench-def"
        assert sub.same_position is True
        assert result.total == 6

    def test_falls_back_to_any_position(self) -> None:
        """Without a same-position option the first bench player who played comes in."""
        provider = MappingStatsProvider(
            {
                "ref-gk": PlayerStats(minutes_played=0),
                "ref-bench-fwd": PlayerStats(minutes_played=FULL_GAME, goals=1),
            }
        )
        slots = [slot(1, "gk", Position.GK), slot(12, "bench-fwd", Position.FWD)]

        result = score_lineup(slots, None, provider)

        assert result.substitutions[0].same_position is False
        # Bench player scores with their own position
        assert result.points["bench-fwd"] == 6

    def test_bench_player_who_did_not_play_is_skipped(self) -> None:
        """Bench players with 0 minutes are never brought in."""
        provider = MappingStatsProvider(
            {
                "ref-bench-idle": PlayerStats(minutes_played=0),
                "ref-bench-active": PlayerStats(minutes_played=FULL_GAME),
            }
        )
        slots = [
            slot(1, "starter", Position.MID),
            slot(12, "bench-idle", Position.MID),
            slot(13, "bench-active", Position.MID),
        ]

        result = score_lineup(slots, None, provider)

        assert result.subbed_in == {"bench-active"}
        assert "bench-idle" not in result.points

    def test_bench_player_used_once(self) -> None:
        """Two absent starters cannot share one bench player."""
        provider = MappingStatsProvider({"ref-bench": PlayerStats(minutes_played=FULL_GAME)})
        slots = [
            slot(1, "first", Position.MID),
            slot(2, "second", Position.MID),
            slot(12, "bench", Position.MID),
        ]

        result = score_lineup(slots, None, provider)

        assert [s.starter_card_id for s in result.substitutions] == ["first"]
        assert result.points["second"] == 0
        assert result.total == 2

    def test_no_substitute_available(self) -> None:
        """An absent starter with no usable bench stays at 0."""
        provider = MappingStatsProvider({"ref-other": PlayerStats(minutes_played=FULL_GAME)})
        slots = [slot(1, "absent", Position.DEF), slot(2, "other", Position.MID)]

        result = score_lineup(slots, None, provider)

        assert result.substitutions == []
        assert result.total == 2

    def test_captain_doubled(self) -> None:
        """The captain's points are doubled."""
        provider = MappingStatsProvider(
            {
                "ref-cap": PlayerStats(minutes_played=FULL_GAME, goals=1),
                "ref-mate": PlayerStats(minutes_played=FULL_GAME),
            }
        )
        slots = [slot(1, "cap", Position.MID), slot(2, "mate", Position.MID)]

        result = score_lineup(slots, "cap", provider)

        assert result.points["cap"] == 14
        assert result.total == 16

    def test_absent_captain_not_doubled_through_substitute(self) -> None:
        """A substituted captain scores 0; the substitute is not doubled."""
        provider = MappingStatsProvider(
            {
                "ref-cap": PlayerStats(minutes_played=0),
                "ref-bench": PlayerStats(minutes_played=FULL_GAME, goals=1),
            }
        )
        slots = [slot(1, "cap", Position.MID), slot(12, "bench", Position.MID)]

        result = score_lineup(slots, "cap", provider)

        assert result.points["cap"] == 0
        assert result.total == 7


class TestScoreBlitzLineup:
    def test_sums_card_points(self) -> None:
        """Blitz score is the plain sum of each card's points."""
        provider = MappingStatsProvider(
            {
                "a": PlayerStats(minutes_played=FULL_GAME, goals=1),
                "b": PlayerStats(minutes_played=FULL_GAME, clean_sheet=True),
            }
        )

        total = score_blitz_lineup([("a", "FWD"), ("b", "GK"), ("c", "MID")], provider)

        assert total == 6 + 6 + 0
