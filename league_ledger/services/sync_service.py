import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from ..client import SleeperClient
from ..config import PLAYERS_SYNC_META_KEY, Settings
from ..database import LedgerStore, now_ms
from ..errors import ConfigurationError, ExternalApiError, NotFoundError, SyncError
from ..models.ledger import (
    ChainSyncResult,
    ChainSyncStep,
    LeagueSeason,
    LedgerMatchup,
    LedgerPlayer,
    LedgerRoster,
    LedgerTransaction,
    LedgerUser,
    PlayerSyncResult,
    SeasonSyncResult,
)
from ..models.sleeper import League, Matchup, Roster, Transaction, User
from .chain import resolve_league_chain, upstream_previous
from .movements import derive_movements, to_int

logger = logging.getLogger(__name__)


def season_last_week(settings: Dict[str, Any], default_last_week: int) -> int:
    """Highest week worth polling: the league's reported leg, else the default."""
    candidates = [to_int(settings.get(key)) for key in ("last_scored_leg", "leg")]
    explicit = [week for week in candidates if week and week > 0]
    return max(explicit) if explicit else default_last_week


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class SyncEngine:
    """
    Pulls one league-season (or a whole season chain) from Sleeper into the ledger.

    Every step is an upsert and each transaction's assets are regenerated from
    its current payload, so re-running a sync converges on upstream state.
    Syncs of the same league id are serialized within the process.
    """

    def __init__(self, client: SleeperClient, store: LedgerStore, settings: Settings):
        self.client = client
        self.store = store
        self.settings = settings
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def sync_league_season(self, league_id: str) -> SeasonSyncResult:
        lock = self._lock_for(league_id)
        if lock.locked():
            logger.info(f"Sync of league {league_id} already running; waiting for it to finish")
        async with lock:
            return await self._sync_league_season(league_id)

    async def _sync_league_season(self, league_id: str) -> SeasonSyncResult:
        league_data = await self._call(league_id, None, self.client.get_league(league_id))
        if not league_data:
            raise NotFoundError(f"League {league_id} not found")
        path = f"/league/{league_id}"
        league = self._parse(league_id, None, path, lambda: League(**league_data))
        season = self._parse(league_id, None, path, lambda: int(league.season))
        last_week = season_last_week(league.settings, self.settings.default_last_week)
        result = SeasonSyncResult(league_id=league_id, season=season, last_week=last_week)
        logger.info(f"Syncing league {league_id} (season {season}, weeks through {last_week})")

        await self.store.upsert_league_season(LeagueSeason(
            league_id=league_id,
            season=season,
            previous_league_id=league.previous_league_id or None,
        ))

        users_data = await self._call(league_id, result, self.client.get_league_users(league_id))
        users = self._parse(league_id, result, f"{path}/users", lambda: [User(**u) for u in users_data])
        result.users = await self.store.upsert_users([
            LedgerUser(user_id=u.user_id, display_name=u.display_name, username=u.username) for u in users
        ])

        rosters_data = await self._call(league_id, result, self.client.get_league_rosters(league_id))
        rosters = self._parse(league_id, result, f"{path}/rosters", lambda: [Roster(**r) for r in rosters_data])
        result.rosters = await self.store.upsert_rosters([
            LedgerRoster(league_id=league_id, season=season, roster_id=r.roster_id, owner_id=r.owner_id or None)
            for r in rosters
        ])

        first_week = min(self.settings.transaction_first_week, self.settings.matchup_first_week)
        for week in range(first_week, last_week + 1):
            if week >= self.settings.matchup_first_week:
                await self._sync_matchups(league_id, season, week, result)
            if week >= self.settings.transaction_first_week:
                await self._sync_transactions(league_id, season, week, result)

        logger.info(
            f"Synced league {league_id} season {season}: {result.transactions_upserted} transactions, "
            f"{result.assets_created} assets, {result.matchups_upserted} matchups"
        )
        return result

    async def _sync_matchups(self, league_id: str, season: int, week: int, result: SeasonSyncResult) -> None:
        matchups_data = await self._call(league_id, result, self.client.get_league_matchups(league_id, week))
        matchups = self._parse(
            league_id, result, f"/league/{league_id}/matchups/{week}", lambda: [Matchup(**m) for m in matchups_data]
        )
        result.matchups_upserted += await self.store.upsert_matchups([
            LedgerMatchup(
                league_id=league_id,
                season=season,
                week=week,
                roster_id=m.roster_id,
                matchup_id=m.matchup_id,
                points=m.points,
            )
            for m in matchups
        ])

    async def _sync_transactions(self, league_id: str, season: int, week: int, result: SeasonSyncResult) -> None:
        transactions_data = await self._call(league_id, result, self.client.get_league_transactions(league_id, week))
        result.transactions_fetched += len(transactions_data)

        for raw in transactions_data:
            tx = self._parse(league_id, result, f"/league/{league_id}/transactions/{week}", lambda: Transaction(**raw))

            movements = derive_movements(raw)
            result.assets_created += await self.store.replace_transaction(
                LedgerTransaction(
                    id=tx.transaction_id,
                    league_id=league_id,
                    season=season,
                    week=week,
                    type=tx.type,
                    status=tx.status,
                    raw=raw,
                ),
                movements,
                created_at_ms=tx.created,
            )
            result.transactions_upserted += 1

    async def _call(self, league_id: str, result: Optional[SeasonSyncResult], awaitable):
        """Await an upstream call, turning API failures into a SyncError carrying progress so far."""
        try:
            return await awaitable
        except ExternalApiError as e:
            progress = result.model_dump() if result is not None else {"league_id": league_id}
            logger.error(f"Sync of league {league_id} aborted: {e}")
            raise SyncError(league_id, progress, e) from e

    def _parse(self, league_id: str, result: Optional[SeasonSyncResult], path: str, build):
        """Build models from an upstream payload; a malformed payload aborts the sync like a failed call."""
        try:
            return build()
        except (ValueError, TypeError) as e:
            progress = result.model_dump() if result is not None else {"league_id": league_id}
            logger.error(f"Sync of league {league_id} aborted on malformed payload from {path}: {e}")
            raise SyncError(league_id, progress, ExternalApiError(path, f"malformed payload: {e}")) from e

    async def sync_league_chain(self, start_league_id: str, max_depth: Optional[int] = None) -> ChainSyncResult:
        """Sync every league-season in the chain, newest first, stopping at the first failure."""
        max_depth = max_depth if max_depth is not None else self.settings.sync_max_depth
        if max_depth < 1:
            raise ConfigurationError(f"max_depth must be at least 1, got {max_depth}")
        chain = await resolve_league_chain(upstream_previous(self.client), start_league_id, max_depth)
        logger.info(f"Resolved league chain from {start_league_id}: {chain}")

        steps: List[ChainSyncStep] = []
        for league_id in chain:
            try:
                season_result = await self.sync_league_season(league_id)
            except SyncError as e:
                steps.append(ChainSyncStep(league_id=league_id, ok=False, error=str(e.cause), progress=e.progress))
                return ChainSyncResult(
                    ok=False, start_league_id=start_league_id, chain=chain, synced_count=len(steps) - 1, results=steps
                )
            except NotFoundError as e:
                steps.append(ChainSyncStep(league_id=league_id, ok=False, error=str(e)))
                return ChainSyncResult(
                    ok=False, start_league_id=start_league_id, chain=chain, synced_count=len(steps) - 1, results=steps
                )
            steps.append(ChainSyncStep(league_id=league_id, ok=True, result=season_result))

        return ChainSyncResult(ok=True, start_league_id=start_league_id, chain=chain, synced_count=len(steps), results=steps)

    async def sync_players(self, force: bool = False) -> PlayerSyncResult:
        """Refresh the NFL player directory in bounded chunks, at most once per configured interval."""
        async with self._lock_for("players:nfl"):
            last_sync = to_int(await self.store.get_meta(PLAYERS_SYNC_META_KEY))
            if not force and last_sync is not None:
                hours_since = (now_ms() - last_sync) / (1000 * 60 * 60)
                if hours_since < self.settings.player_sync_min_interval_hours:
                    return PlayerSyncResult(skipped=True, reason="synced_recently")

            started = time.monotonic()
            players_data = await self.client.get_all_players()
            players = [
                LedgerPlayer(
                    player_id=str(player_id),
                    full_name=p.get("full_name") or _join_name(p),
                    position=p.get("position"),
                    team=p.get("team"),
                    status=p.get("status"),
                )
                for player_id, p in players_data.items()
                if isinstance(p, dict)
            ]

            chunks = chunked(players, self.settings.player_sync_chunk_size)
            for chunk in chunks:
                await self.store.upsert_players(chunk)

            await self.store.set_meta(PLAYERS_SYNC_META_KEY, str(now_ms()))
            logger.info(f"Synced {len(players)} players in {len(chunks)} chunks ({time.monotonic() - started:.1f}s)")
            return PlayerSyncResult(count=len(players), chunks=len(chunks))


def _join_name(player: Dict[str, Any]) -> Optional[str]:
    # Team defenses have no full_name, only first/last.
    parts = [player.get("first_name"), player.get("last_name")]
    name = " ".join(p for p in parts if p)
    return name or None
