from typing import List, Dict, Any, Optional, Union
from datetime import datetime
from pydantic import BaseModel


ASSET_KINDS = ("player", "pick", "faab")


class LeagueSeason(BaseModel):
    league_id: str
    season: int
    previous_league_id: Optional[str] = None


class LedgerUser(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    username: Optional[str] = None


class LedgerRoster(BaseModel):
    league_id: str
    season: int
    roster_id: int
    owner_id: Optional[str] = None


class LedgerMatchup(BaseModel):
    league_id: str
    season: int
    week: int
    roster_id: int
    matchup_id: Optional[int] = None
    points: Optional[float] = None


class LedgerPlayer(BaseModel):
    player_id: str
    full_name: Optional[str] = None
    position: Optional[str] = None
    team: Optional[str] = None
    status: Optional[str] = None


class AssetMovement(BaseModel):
    """One player, pick or FAAB amount moving in a transaction.

    Only the fields belonging to ``kind`` are set; the rest stay None.
    """
    kind: str
    player_id: Optional[str] = None
    from_roster_id: Optional[int] = None
    to_roster_id: Optional[int] = None
    pick_season: Optional[int] = None
    pick_round: Optional[int] = None
    faab_amount: Optional[int] = None


class TransactionAsset(AssetMovement):
    transaction_id: str


class LedgerTransaction(BaseModel):
    id: str
    league_id: str
    season: int
    week: int
    type: str
    status: str
    created_at: Optional[datetime] = None
    raw: Dict[str, Any]
    assets: List[TransactionAsset] = []


class TransactionFilters(BaseModel):
    seasons: List[int] = []
    types: List[str] = []
    teams: List[int] = []
    player_id: Optional[str] = None


# ---- Sync results ----

class SeasonSyncResult(BaseModel):
    league_id: str
    season: int
    users: int = 0
    rosters: int = 0
    matchups_upserted: int = 0
    transactions_fetched: int = 0
    transactions_upserted: int = 0
    assets_created: int = 0
    last_week: int = 0


class PlayerSyncResult(BaseModel):
    skipped: bool = False
    reason: Optional[str] = None
    count: int = 0
    chunks: int = 0


class ChainSyncStep(BaseModel):
    league_id: str
    ok: bool
    result: Optional[SeasonSyncResult] = None
    error: Optional[str] = None
    progress: Optional[Dict[str, Any]] = None


class ChainSyncResult(BaseModel):
    ok: bool
    start_league_id: str
    chain: List[str]
    synced_count: int
    results: List[ChainSyncStep]


# ---- Read view-models ----

class TradeLine(BaseModel):
    roster_id: int
    team: str
    received: List[str] = []
    sent: List[str] = []


class TradeMoves(BaseModel):
    kind: str = "trade"
    lines: List[TradeLine] = []


class FaabLine(BaseModel):
    roster_id: int
    team: str
    amount: int


class SimpleMoves(BaseModel):
    kind: str = "simple"
    adds: List[str] = []
    drops: List[str] = []
    faab: List[FaabLine] = []


class TransactionView(BaseModel):
    id: str
    league_id: str
    season: int
    week: int
    type: str
    type_label: str
    date: Optional[str] = None
    teams_label: str
    moves: Union[TradeMoves, SimpleMoves]


class TeamFacet(BaseModel):
    roster_id: int
    label: str


class Facets(BaseModel):
    seasons: List[int] = []
    types: List[str] = []
    teams: List[TeamFacet] = []


class TransactionPage(BaseModel):
    ok: bool = True
    root_league_id: str
    chain_league_ids: List[str]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    items: List[TransactionView]
    facets: Facets


# ---- Head-to-head ----

class HeadToHeadRecord(BaseModel):
    roster_a: int
    roster_b: int
    team_a: str
    team_b: str
    games: int = 0
    wins_a: int = 0
    wins_b: int = 0
    ties: int = 0
    points_a: float = 0.0
    points_b: float = 0.0


class HeadToHeadPage(BaseModel):
    ok: bool = True
    league_id: str
    season: int
    records: List[HeadToHeadRecord]
