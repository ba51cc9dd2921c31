from dataclasses import dataclass

from matchbank.models.enums import Position


@dataclass(frozen=True, slots=True)
class PlayerStats:
    """
    One player's match statistics for a scoring period.

    Attributes:
        minutes_played: Minutes on the pitch (0 means did not play)
        goals: Goals scored
        assists: Assists provided
        yellow_cards: Yellow cards received
        red_cards: Red cards received
        clean_sheet: Whether the player's team conceded nothing
        goals_conceded: Goals conceded by the player's team
    """

    minutes_played: int = 0
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    clean_sheet: bool = False
    goals_conceded: int = 0


@dataclass(frozen=True, slots=True)
class PlayerSnapshot:
    """The player data minted onto a card."""

    id: str
    name: str
    club: str
    position: Position
