from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "MatchBank"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/matchbank"

    # Applied when a listing is created; sales always pay the stored net amount
    market_tax_rate: float = 0.10

    # Duplicate-submission guard
    duplicate_window_ms: int = 5000
    max_attempts_before_block: int = 3

    # Alerting thresholds, evaluated over the last `alert_window_hours`
    error_alert_threshold: int = 10
    critical_alert_threshold: int = 3
    alert_window_hours: int = 1

    # Optimistic-concurrency retries for a single transaction body
    transaction_max_attempts: int = 5

    gameweek_coins_per_point: int = 10
    gameweek_xp_per_point: int = 5

    # Share of blitz entries that receive a prize (at least one)
    blitz_payout_fraction: float = 0.10

    # Upper bound on player references considered when opening a pack
    player_pool_sample_size: int = 50


settings = Settings()


# =============================================================================
# SCORING RULES
# =============================================================================

PRESENCE_MINUTES = 60
PRESENCE_POINTS = 2
GOAL_POINTS = {"GK": 6, "DEF": 6, "MID": 5, "FWD": 4}
DEFAULT_GOAL_POINTS = 4
ASSIST_POINTS = 3
CLEAN_SHEET_POINTS = 4
YELLOW_CARD_POINTS = -1
RED_CARD_POINTS = -3
GOALS_CONCEDED_PER_2_POINTS = -1

CAPTAIN_MULTIPLIER = 2
STARTER_SLOTS = 11
BLITZ_LINEUP_SIZE = 5
