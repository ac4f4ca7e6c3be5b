from typing import List, Dict, Any, Optional, Union
from pydantic import BaseModel


class User(BaseModel):
    user_id: str
    username: Optional[str] = None
    display_name: Optional[str] = None


class League(BaseModel):
    league_id: str
    name: Optional[str] = None
    season: Union[str, int]
    status: Optional[str] = None
    previous_league_id: Optional[str] = None
    settings: Dict[str, Any] = {}


class Roster(BaseModel):
    roster_id: int
    owner_id: Optional[str] = None


class Draft(BaseModel):
    draft_id: str
    league_id: Optional[str] = None
    status: Optional[str] = None
    type: Optional[str] = None
    season: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    slot_to_roster_id: Optional[Dict[str, Optional[int]]] = None


class Pick(BaseModel):
    player_id: Optional[str] = None
    pick_no: Optional[int] = None
    round: int
    draft_slot: Optional[int] = None
    roster_id: Optional[int] = None


class Transaction(BaseModel):
    transaction_id: str
    type: str
    status: str
    created: Optional[int] = None  # Unix timestamp in ms
    adds: Optional[Dict[str, Any]] = None
    drops: Optional[Dict[str, Any]] = None
    # Pick entries stay raw; movement derivation reads them leniently.
    draft_picks: Optional[List[Any]] = None
    settings: Optional[Dict[str, Any]] = None


class Matchup(BaseModel):
    matchup_id: Optional[int] = None
    roster_id: int
    points: Optional[float] = None
