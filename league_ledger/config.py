import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from .errors import ConfigurationError

load_dotenv()

API_URL = "https://api.sleeper.app/v1"
PLAYERS_SYNC_META_KEY = "players_nfl_last_sync_ms"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


class Settings(BaseModel):
    league_id: Optional[str] = None
    api_url: str = API_URL
    database_path: str = "league_ledger.db"

    timeout_seconds: float = 20.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.75

    sync_max_depth: int = 15
    read_max_depth: int = 20

    # Sleeper reports pre-season waiver/free-agent moves under week 0, while
    # matchups only exist from week 1 on.
    transaction_first_week: int = 0
    matchup_first_week: int = 1
    default_last_week: int = 17

    player_sync_chunk_size: int = 500
    player_sync_min_interval_hours: float = 24.0

    enrich_drafted_players: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            league_id=os.getenv("SLEEPER_LEAGUE_ID") or None,
            api_url=os.getenv("SLEEPER_API_URL", API_URL),
            database_path=os.getenv("LEDGER_DATABASE_PATH", "league_ledger.db"),
            timeout_seconds=_env_float("SLEEPER_TIMEOUT_SECONDS", 20.0),
            retry_attempts=_env_int("SLEEPER_RETRY_ATTEMPTS", 3),
            retry_backoff_seconds=_env_float("SLEEPER_RETRY_BACKOFF_SECONDS", 0.75),
            sync_max_depth=_env_int("CHAIN_MAX_DEPTH", 15),
            read_max_depth=_env_int("CHAIN_READ_MAX_DEPTH", 20),
            transaction_first_week=_env_int("TRANSACTION_FIRST_WEEK", 0),
            matchup_first_week=_env_int("MATCHUP_FIRST_WEEK", 1),
            default_last_week=_env_int("DEFAULT_LAST_WEEK", 17),
            player_sync_chunk_size=_env_int("PLAYER_SYNC_CHUNK_SIZE", 500),
            player_sync_min_interval_hours=_env_float("PLAYER_SYNC_MIN_INTERVAL_HOURS", 24.0),
            enrich_drafted_players=os.getenv("ENRICH_DRAFTED_PLAYERS", "1") not in ("0", "false", "False"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def require_league_id(self, league_id: Optional[str] = None) -> str:
        """Explicit id wins over SLEEPER_LEAGUE_ID; neither is a configuration error."""
        resolved = (league_id or "").strip() or (self.league_id or "").strip()
        if not resolved:
            raise ConfigurationError("Missing league_id (or SLEEPER_LEAGUE_ID env var)")
        return resolved


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # DataIntegrityWarning from label resolution goes to the log, not stderr.
    logging.captureWarnings(True)
