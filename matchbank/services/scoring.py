"""
Scoring engine.

Pure functions mapping (position, stats) to fantasy points, plus the lineup
auto-substitution rules. Shared by the gameweek and blitz resolvers; nothing
here touches the database.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

from matchbank.config import (
    ASSIST_POINTS,
    CAPTAIN_MULTIPLIER,
    CLEAN_SHEET_POINTS,
    DEFAULT_GOAL_POINTS,
    GOAL_POINTS,
    GOALS_CONCEDED_PER_2_POINTS,
    PRESENCE_MINUTES,
    PRESENCE_POINTS,
    RED_CARD_POINTS,
    STARTER_SLOTS,
    YELLOW_CARD_POINTS,
)
from matchbank.models.enums import Position
from matchbank.models.player import PlayerStats
from matchbank.services.stats_provider import StatsProvider

DEFENSIVE_POSITIONS = frozenset({Position.GK, Position.DEF})


def calculate_points(position: Position | str, stats: PlayerStats) -> int:
    """
    Score one player's statistics.

    A player who did not play scores 0 regardless of anything else.
    Clean-sheet and goals-conceded rules apply to goalkeepers and defenders
    only; the clean-sheet bonus additionally requires 60 minutes.
    """
    pos = Position.parse(position) if isinstance(position, str) else position

    if stats.minutes_played == 0:
        return 0

    points = 0
    if stats.minutes_played >= PRESENCE_MINUTES:
        points += PRESENCE_POINTS

    points += stats.goals * GOAL_POINTS.get(pos.value, DEFAULT_GOAL_POINTS)
    points += stats.assists * ASSIST_POINTS

    defensive = pos in DEFENSIVE_POSITIONS
    if defensive and stats.clean_sheet and stats.minutes_played >= PRESENCE_MINUTES:
        points += CLEAN_SHEET_POINTS

    points += stats.yellow_cards * YELLOW_CARD_POINTS
    points += stats.red_cards * RED_CARD_POINTS

    if defensive:
        points += (stats.goals_conceded // 2) * GOALS_CONCEDED_PER_2_POINTS

    return points


# =============================================================================
# LINEUP RESOLUTION
# =============================================================================


@dataclass(frozen=True, slots=True)
class SlotInput:
    """A lineup slot as seen by the scorer."""

    position_slot: int
    card_id: str
    player_reference_id: str
    position: Position


@dataclass(frozen=True, slots=True)
class Substitution:
    starter_card_id: str
    bench_card_id: str
    points: int
    same_position: bool


@dataclass
class LineupScore:
    """
    Result of scoring one lineup.

    Attributes:
        points: Effective points per card id (starters and subbed-in bench)
        substitutions: Substitutions applied, in starter order
        total: Sum of effective starter points after captaincy
    """

    points: dict[str, int] = field(default_factory=dict)
    substitutions: list[Substitution] = field(default_factory=list)
    total: int = 0

    @property
    def subbed_in(self) -> set[str]:
        return {s.bench_card_id for s in self.substitutions}


def _find_substitute(
    starter: SlotInput,
    bench: Sequence[SlotInput],
    bench_stats: dict[str, PlayerStats],
    used: set[str],
    match_position: bool,
) -> SlotInput | None:
    for candidate in bench:
        if candidate.card_id in used:
            continue
        if match_position and candidate.position != starter.position:
            continue
        if bench_stats[candidate.card_id].minutes_played > 0:
            return candidate
    return None


def score_lineup(
    slots: Sequence[SlotInput],
    captain_card_id: str | None,
    stats_provider: StatsProvider,
) -> LineupScore:
    """
    Score a lineup with automatic substitutions and captaincy.

    For each starter (slot order) who did not play, the first unused bench
    player (ascending slot) with the same position and minutes > 0 comes in;
    failing that, the first unused bench player of any position with
    minutes > 0. A bench player substitutes at most once.

    The captain's points are doubled after substitutions.
    """
    ordered = sorted(slots, key=lambda s: s.position_slot)
    starters = [s for s in ordered if s.position_slot <= STARTER_SLOTS]
    bench = [s for s in ordered if s.position_slot > STARTER_SLOTS]

    stats = {s.card_id: stats_provider.get_stats(s.player_reference_id) for s in ordered}

    result = LineupScore()
    for starter in starters:
        result.points[starter.card_id] = calculate_points(
            starter.position, stats[starter.card_id]
        )

    used: set[str] = set()
    for starter in starters:
        if stats[starter.card_id].minutes_played != 0:
            continue

        same_position = True
        sub = _find_substitute(starter, bench, stats, used, match_position=True)
        if sub is None:
            same_position = False
            sub = _find_substitute(starter, bench, stats, used, match_position=False)
        if sub is None:
            continue

        sub_points = calculate_points(sub.position, stats[sub.card_id])
        result.points[starter.card_id] = 0
        result.points[sub.card_id] = sub_points
        used.add(sub.card_id)
        result.substitutions.append(
            Substitution(
                starter_card_id=starter.card_id,
                bench_card_id=sub.card_id,
                points=sub_points,
                same_position=same_position,
            )
        )

    if captain_card_id and result.points.get(captain_card_id):
        result.points[captain_card_id] *= CAPTAIN_MULTIPLIER

    result.total = sum(result.points.values())
    return result


def score_blitz_lineup(
    cards: Sequence[tuple[str, Position | str]],
    stats_provider: StatsProvider,
) -> int:
    """Sum the points of a blitz lineup given (player_reference_id, position) pairs."""
    return sum(
        calculate_points(position, stats_provider.get_stats(reference_id))
        for reference_id, position in cards
    )
