import copy
from contextlib import asynccontextmanager

import httpx
import pytest

from league_ledger.client import SleeperClient
from league_ledger.config import Settings
from league_ledger.database import LedgerStore
from league_ledger.services.sync_service import SyncEngine

API_URL = "https://api.sleeper.app/v1"

LEAGUE_2023 = "1000000000000002023"
LEAGUE_2022 = "1000000000000002022"

TRADE_CREATED_MS = 1696700000000


class FakeSleeper:
    """In-memory stand-in for the Sleeper REST API, served through httpx.MockTransport."""

    def __init__(self):
        self.leagues = {}
        self.users = {}
        self.rosters = {}
        self.matchups = {}
        self.transactions = {}
        self.drafts = {}
        self.draft_picks = {}
        self.players = {}
        self.failures = {}
        self.requests = []

    def fail(self, path, status_code=500):
        self.failures[path] = status_code

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/v1"):
            path = path[len("/v1"):]
        self.requests.append(path)
        if path in self.failures:
            return httpx.Response(self.failures[path], text="upstream exploded")

        parts = path.strip("/").split("/")
        body = None
        if parts[0] == "league" and len(parts) == 2:
            body = self.leagues.get(parts[1])
        elif parts[0] == "league" and parts[2] == "users":
            body = self.users.get(parts[1], [])
        elif parts[0] == "league" and parts[2] == "rosters":
            body = self.rosters.get(parts[1], [])
        elif parts[0] == "league" and parts[2] == "matchups":
            body = self.matchups.get((parts[1], int(parts[3])), [])
        elif parts[0] == "league" and parts[2] == "transactions":
            body = self.transactions.get((parts[1], int(parts[3])), [])
        elif parts[0] == "league" and parts[2] == "drafts":
            body = self.drafts.get(parts[1], [])
        elif parts[0] == "draft" and parts[2] == "picks":
            body = self.draft_picks.get(parts[1], [])
        elif parts[0] == "players":
            body = self.players
        else:
            return httpx.Response(404, text="not found")
        if body is None:
            # Sleeper answers unknown ids with a literal JSON null.
            return httpx.Response(200, content=b"null", headers={"content-type": "application/json"})
        return httpx.Response(200, json=copy.deepcopy(body))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def build_two_season_league() -> FakeSleeper:
    """2023 <- 2022 chain. Roster 3 changes hands between seasons; roster 7 does not."""
    fake = FakeSleeper()
    fake.leagues[LEAGUE_2023] = {
        "league_id": LEAGUE_2023,
        "name": "Dynasty Bros",
        "season": "2023",
        "status": "complete",
        "previous_league_id": LEAGUE_2022,
        "settings": {"last_scored_leg": 5},
    }
    fake.leagues[LEAGUE_2022] = {
        "league_id": LEAGUE_2022,
        "name": "Dynasty Bros",
        "season": "2022",
        "status": "complete",
        "previous_league_id": None,
        "settings": {},
    }
    users = [
        {"user_id": "u_alice", "username": "alice99", "display_name": "Alice"},
        {"user_id": "u_bob", "username": "bobby", "display_name": "Bob"},
        {"user_id": "u_carol", "username": "carol", "display_name": "Carol"},
        {"user_id": "u_dave", "username": "dave_the_great", "display_name": None},
    ]
    fake.users[LEAGUE_2023] = users
    fake.users[LEAGUE_2022] = users
    fake.rosters[LEAGUE_2023] = [
        {"roster_id": 2, "owner_id": "u_alice"},
        {"roster_id": 3, "owner_id": "u_carol"},
        {"roster_id": 7, "owner_id": "u_bob"},
        {"roster_id": 9, "owner_id": None},
    ]
    fake.rosters[LEAGUE_2022] = [
        {"roster_id": 2, "owner_id": "u_carol"},
        {"roster_id": 3, "owner_id": "u_dave"},
        {"roster_id": 7, "owner_id": "u_bob"},
    ]
    fake.matchups[(LEAGUE_2023, 1)] = [
        {"roster_id": 2, "matchup_id": 1, "points": 101.5},
        {"roster_id": 7, "matchup_id": 1, "points": 99.2},
    ]
    fake.matchups[(LEAGUE_2022, 1)] = [
        {"roster_id": 3, "matchup_id": 1, "points": 88.0},
    ]
    fake.transactions[(LEAGUE_2023, 0)] = [{
        "transaction_id": "tx_fa",
        "type": "free_agent",
        "status": "complete",
        "created": 1692000000000,
        "adds": {"1234": 3},
        "drops": None,
        "roster_ids": [3],
    }]
    fake.transactions[(LEAGUE_2023, 3)] = [{
        "transaction_id": "tx_waiver",
        "type": "waiver",
        "status": "complete",
        "created": 1695000000000,
        "adds": {"5555": 3},
        "drops": {"1234": 3},
        "roster_ids": [3],
        "settings": {"waiver_bid": 12},
    }]
    fake.transactions[(LEAGUE_2023, 4)] = [{
        "transaction_id": "tx_failed",
        "type": "waiver",
        "status": "failed",
        "created": 1696000000000,
        "adds": None,
        "drops": None,
        "roster_ids": [2],
    }]
    fake.transactions[(LEAGUE_2023, 5)] = [{
        "transaction_id": "tx_trade",
        "type": "trade",
        "status": "complete",
        "created": TRADE_CREATED_MS,
        "adds": {"4046": 7},
        "drops": {"4046": 2},
        "roster_ids": [2, 7],
        "draft_picks": [
            {"season": "2024", "round": 2, "roster_id": 2, "previous_owner_id": 2, "owner_id": 7},
        ],
        "waiver_budget": [],
    }]
    fake.transactions[(LEAGUE_2022, 2)] = [{
        "transaction_id": "tx_2022",
        "type": "trade",
        "status": "complete",
        "created": 1663000000000,
        "adds": {"777": 3},
        "drops": {"777": 7},
        "roster_ids": [3, 7],
        "draft_picks": [
            {"season": "2023", "round": 1, "roster_id": 3, "previous_owner_id": 3, "owner_id": 7},
        ],
    }]
    fake.drafts[LEAGUE_2023] = [
        {
            "draft_id": "d_startup",
            "status": "complete",
            "type": "snake",
            "season": "2023",
            "metadata": {"name": "Redraft"},
            "slot_to_roster_id": {"1": 7, "2": 3},
        },
        {
            "draft_id": "d_rookie",
            "status": "complete",
            "type": "linear",
            "season": "2023",
            "metadata": {"name": "2023 Rookie Draft"},
            "slot_to_roster_id": {"1": 3, "2": 2, "3": 7},
        },
    ]
    fake.draft_picks["d_rookie"] = [
        {"pick_no": 1, "round": 1, "draft_slot": 1, "roster_id": 7, "player_id": "9001"},
        {"pick_no": 2, "round": 1, "draft_slot": 2, "roster_id": 2, "player_id": "9002"},
    ]
    fake.draft_picks["d_startup"] = [
        {"pick_no": 1, "round": 1, "draft_slot": 1, "roster_id": 7, "player_id": "4046"},
    ]
    fake.players = {
        "4046": {"full_name": "Patrick Mahomes", "position": "QB", "team": "KC", "status": "Active"},
        "1234": {"full_name": "Some Player", "position": "WR", "team": None, "status": "Active"},
        "5555": {"full_name": "Bench Guy", "position": "RB", "team": "NYJ", "status": "Active"},
        "777": {"full_name": "Old Vet", "position": "TE", "team": "GB", "status": "Inactive"},
        "9001": {"full_name": "Rookie Star", "position": "WR", "team": "SF", "status": "Active"},
        "DAL": {"first_name": "Dallas", "last_name": "Cowboys", "position": "DEF", "team": "DAL"},
    }
    return fake


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        league_id=LEAGUE_2023,
        database_path=str(tmp_path / "ledger.db"),
        retry_attempts=2,
        retry_backoff_seconds=0.0,
        timeout_seconds=5.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def fake():
    return build_two_season_league()


@pytest.fixture
def ledger(tmp_path, fake):
    """Factory for an open (store, client, settings, engine) bundle inside a test's event loop."""

    @asynccontextmanager
    async def open_ledger(**overrides):
        settings = make_settings(tmp_path, **overrides)
        async with LedgerStore(settings.database_path) as store:
            async with SleeperClient(
                base_url=API_URL,
                retry_attempts=settings.retry_attempts,
                retry_backoff=settings.retry_backoff_seconds,
                transport=fake.transport(),
            ) as client:
                yield store, client, settings, SyncEngine(client, store, settings)

    return open_ledger
