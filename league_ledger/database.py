import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import aiosqlite

from .models.ledger import (
    ASSET_KINDS,
    LeagueSeason,
    LedgerMatchup,
    LedgerPlayer,
    LedgerRoster,
    LedgerTransaction,
    LedgerUser,
    TransactionAsset,
    AssetMovement,
    TransactionFilters,
)

_ASSET_KIND_LIST = ", ".join(f"'{k}'" for k in ASSET_KINDS)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS league_season (
        league_id TEXT PRIMARY KEY,
        season INTEGER NOT NULL,
        previous_league_id TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sleeper_user (
        user_id TEXT PRIMARY KEY,
        username TEXT,
        display_name TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS roster (
        league_id TEXT NOT NULL,
        season INTEGER NOT NULL,
        roster_id INTEGER NOT NULL,
        owner_id TEXT,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (league_id, season, roster_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS matchup (
        league_id TEXT NOT NULL,
        season INTEGER NOT NULL,
        week INTEGER NOT NULL,
        roster_id INTEGER NOT NULL,
        matchup_id INTEGER,
        points REAL,
        PRIMARY KEY (league_id, season, week, roster_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_transaction (
        id TEXT PRIMARY KEY,
        league_id TEXT NOT NULL,
        season INTEGER NOT NULL,
        week INTEGER NOT NULL,
        type TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at_ms INTEGER,
        raw_json TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ledger_transaction_league_season_week ON ledger_transaction (league_id, season, week)",
    f"""
    CREATE TABLE IF NOT EXISTS transaction_asset (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        transaction_id TEXT NOT NULL REFERENCES ledger_transaction (id) ON DELETE CASCADE,
        kind TEXT NOT NULL CHECK (kind IN ({_ASSET_KIND_LIST})),
        player_id TEXT,
        from_roster_id INTEGER,
        to_roster_id INTEGER,
        pick_season INTEGER,
        pick_round INTEGER,
        faab_amount INTEGER
    )
    """,
    "CREATE INDEX IF NOT EXISTS transaction_asset_transaction ON transaction_asset (transaction_id)",
    """
    CREATE TABLE IF NOT EXISTS sleeper_player (
        player_id TEXT PRIMARY KEY,
        full_name TEXT,
        position TEXT,
        team TEXT,
        status TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS app_meta (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at TEXT NOT NULL
    )
    """,
]

ASSET_COLUMNS = (
    "transaction_id, kind, player_id, from_roster_id, to_roster_id, pick_season, pick_round, faab_amount"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


def _ms_to_datetime(ms: Optional[int]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class LedgerStore:
    """
    SQLite-backed ledger of league seasons, rosters, transactions and assets.

    Writes go through one connection guarded by an ``asyncio.Lock`` and
    commit as a unit, so a transaction's asset set is replaced atomically.
    Reads use a second connection; with WAL journaling it only ever sees
    committed data, which keeps a page render from observing a
    half-replaced asset set. Safe to share across concurrent sync and read
    tasks within one event loop.
    """

    def __init__(self, path: str):
        self.path = path
        self._writer: Optional[aiosqlite.Connection] = None
        self._reader: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def __aenter__(self) -> "LedgerStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        self._writer = await aiosqlite.connect(self.path)
        self._writer.row_factory = aiosqlite.Row
        await self._writer.execute("PRAGMA journal_mode=WAL")
        await self._writer.execute("PRAGMA foreign_keys=ON")
        await self.create_tables()

        self._reader = await aiosqlite.connect(self.path)
        self._reader.row_factory = aiosqlite.Row

    async def close(self) -> None:
        if self._reader is not None:
            await self._reader.close()
            self._reader = None
        if self._writer is not None:
            await self._writer.close()
            self._writer = None

    async def create_tables(self) -> None:
        for statement in SCHEMA:
            await self._writer.execute(statement)
        await self._writer.commit()

    # ---------- write helpers ----------

    async def _write(self, statements: Iterable[Tuple[str, Sequence[Any]]]) -> None:
        async with self._write_lock:
            try:
                for sql, params in statements:
                    await self._writer.execute(sql, params)
                await self._writer.commit()
            except BaseException:
                await self._writer.rollback()
                raise

    async def _write_many(self, sql: str, rows: List[Sequence[Any]]) -> int:
        if not rows:
            return 0
        async with self._write_lock:
            try:
                await self._writer.executemany(sql, rows)
                await self._writer.commit()
            except BaseException:
                await self._writer.rollback()
                raise
        return len(rows)

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        cursor = await self._reader.execute(sql, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)

    # ---------- upserts ----------

    async def upsert_league_season(self, league_season: LeagueSeason) -> None:
        await self._write([(
            """
            INSERT INTO league_season (league_id, season, previous_league_id, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (league_id) DO UPDATE SET
                season = excluded.season,
                previous_league_id = excluded.previous_league_id,
                updated_at = excluded.updated_at
            """,
            (league_season.league_id, league_season.season, league_season.previous_league_id, _now()),
        )])

    async def upsert_users(self, users: List[LedgerUser]) -> int:
        now = _now()
        return await self._write_many(
            """
            INSERT INTO sleeper_user (user_id, username, display_name, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                username = excluded.username,
                display_name = excluded.display_name,
                updated_at = excluded.updated_at
            """,
            [(u.user_id, u.username, u.display_name, now) for u in users],
        )

    async def upsert_rosters(self, rosters: List[LedgerRoster]) -> int:
        now = _now()
        return await self._write_many(
            """
            INSERT INTO roster (league_id, season, roster_id, owner_id, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (league_id, season, roster_id) DO UPDATE SET
                owner_id = excluded.owner_id,
                updated_at = excluded.updated_at
            """,
            [(r.league_id, r.season, r.roster_id, r.owner_id, now) for r in rosters],
        )

    async def upsert_matchups(self, matchups: List[LedgerMatchup]) -> int:
        return await self._write_many(
            """
            INSERT INTO matchup (league_id, season, week, roster_id, matchup_id, points)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (league_id, season, week, roster_id) DO UPDATE SET
                matchup_id = excluded.matchup_id,
                points = excluded.points
            """,
            [(m.league_id, m.season, m.week, m.roster_id, m.matchup_id, m.points) for m in matchups],
        )

    async def replace_transaction(
        self,
        transaction: LedgerTransaction,
        movements: List[AssetMovement],
        created_at_ms: Optional[int] = None,
    ) -> int:
        """Upsert one transaction and regenerate its asset rows in a single commit."""
        statements: List[Tuple[str, Sequence[Any]]] = [
            (
                """
                INSERT INTO ledger_transaction (id, league_id, season, week, type, status, created_at_ms, raw_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    league_id = excluded.league_id,
                    season = excluded.season,
                    week = excluded.week,
                    type = excluded.type,
                    status = excluded.status,
                    created_at_ms = excluded.created_at_ms,
                    raw_json = excluded.raw_json
                """,
                (
                    transaction.id,
                    transaction.league_id,
                    transaction.season,
                    transaction.week,
                    transaction.type,
                    transaction.status,
                    created_at_ms,
                    json.dumps(transaction.raw, sort_keys=True),
                ),
            ),
            ("DELETE FROM transaction_asset WHERE transaction_id = ?", (transaction.id,)),
        ]
        for mv in movements:
            statements.append((
                f"INSERT INTO transaction_asset ({ASSET_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    transaction.id,
                    mv.kind,
                    mv.player_id,
                    mv.from_roster_id,
                    mv.to_roster_id,
                    mv.pick_season,
                    mv.pick_round,
                    mv.faab_amount,
                ),
            ))
        await self._write(statements)
        return len(movements)

    async def upsert_players(self, players: List[LedgerPlayer]) -> int:
        now = _now()
        return await self._write_many(
            """
            INSERT INTO sleeper_player (player_id, full_name, position, team, status, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (player_id) DO UPDATE SET
                full_name = excluded.full_name,
                position = excluded.position,
                team = excluded.team,
                status = excluded.status,
                updated_at = excluded.updated_at
            """,
            [(p.player_id, p.full_name, p.position, p.team, p.status, now) for p in players],
        )

    async def set_meta(self, key: str, value: str) -> None:
        await self._write([(
            """
            INSERT INTO app_meta (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, _now()),
        )])

    # ---------- reads ----------

    async def get_meta(self, key: str) -> Optional[str]:
        rows = await self._fetchall("SELECT value FROM app_meta WHERE key = ?", (key,))
        return rows[0]["value"] if rows else None

    async def get_league_season(self, league_id: str) -> Optional[LeagueSeason]:
        rows = await self._fetchall(
            "SELECT league_id, season, previous_league_id FROM league_season WHERE league_id = ?",
            (league_id,),
        )
        return LeagueSeason(**dict(rows[0])) if rows else None

    async def get_league_seasons(self, league_ids: List[str]) -> List[LeagueSeason]:
        if not league_ids:
            return []
        rows = await self._fetchall(
            f"SELECT league_id, season, previous_league_id FROM league_season "
            f"WHERE league_id IN ({_placeholders(league_ids)}) ORDER BY season DESC",
            list(league_ids),
        )
        return [LeagueSeason(**dict(r)) for r in rows]

    async def get_rosters_for_pairs(self, pairs: Iterable[Tuple[str, int]]) -> List[LedgerRoster]:
        """All rosters belonging to any of the given (league_id, season) pairs, in one query."""
        pairs = sorted(set(pairs))
        if not pairs:
            return []
        clause = " OR ".join("(league_id = ? AND season = ?)" for _ in pairs)
        params: List[Any] = [v for pair in pairs for v in pair]
        rows = await self._fetchall(
            f"SELECT league_id, season, roster_id, owner_id FROM roster WHERE {clause}",
            params,
        )
        return [LedgerRoster(**dict(r)) for r in rows]

    async def get_roster(self, league_id: str, season: int, roster_id: int) -> Optional[LedgerRoster]:
        rows = await self._fetchall(
            "SELECT league_id, season, roster_id, owner_id FROM roster "
            "WHERE league_id = ? AND season = ? AND roster_id = ?",
            (league_id, season, roster_id),
        )
        return LedgerRoster(**dict(rows[0])) if rows else None

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> List[LedgerUser]:
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return []
        rows = await self._fetchall(
            f"SELECT user_id, username, display_name FROM sleeper_user WHERE user_id IN ({_placeholders(user_ids)})",
            user_ids,
        )
        return [LedgerUser(**dict(r)) for r in rows]

    async def get_players_by_ids(self, player_ids: Iterable[str]) -> List[LedgerPlayer]:
        player_ids = sorted(set(player_ids))
        if not player_ids:
            return []
        rows = await self._fetchall(
            f"SELECT player_id, full_name, position, team, status FROM sleeper_player "
            f"WHERE player_id IN ({_placeholders(player_ids)})",
            player_ids,
        )
        return [LedgerPlayer(**dict(r)) for r in rows]

    async def list_matchups(self, league_id: str, season: int) -> List[LedgerMatchup]:
        rows = await self._fetchall(
            "SELECT league_id, season, week, roster_id, matchup_id, points FROM matchup "
            "WHERE league_id = ? AND season = ? ORDER BY week, roster_id",
            (league_id, season),
        )
        return [LedgerMatchup(**dict(r)) for r in rows]

    # ---------- transaction queries ----------

    @staticmethod
    def _transaction_where(league_ids: List[str], filters: TransactionFilters) -> Tuple[str, List[Any]]:
        clauses = [f"t.league_id IN ({_placeholders(league_ids)})"]
        params: List[Any] = list(league_ids)
        if filters.seasons:
            clauses.append(f"t.season IN ({_placeholders(filters.seasons)})")
            params.extend(filters.seasons)
        if filters.types:
            clauses.append(f"t.type IN ({_placeholders(filters.types)})")
            params.extend(filters.types)
        if filters.teams:
            marks = _placeholders(filters.teams)
            clauses.append(
                "EXISTS (SELECT 1 FROM transaction_asset a WHERE a.transaction_id = t.id "
                f"AND (a.from_roster_id IN ({marks}) OR a.to_roster_id IN ({marks})))"
            )
            params.extend(filters.teams)
            params.extend(filters.teams)
        if filters.player_id:
            clauses.append(
                "EXISTS (SELECT 1 FROM transaction_asset a WHERE a.transaction_id = t.id AND a.player_id = ?)"
            )
            params.append(filters.player_id)
        return " AND ".join(clauses), params

    async def count_transactions(self, league_ids: List[str], filters: TransactionFilters) -> int:
        if not league_ids:
            return 0
        where, params = self._transaction_where(league_ids, filters)
        rows = await self._fetchall(f"SELECT COUNT(*) AS n FROM ledger_transaction t WHERE {where}", params)
        return rows[0]["n"]

    async def list_transactions(
        self,
        league_ids: List[str],
        filters: TransactionFilters,
        offset: int = 0,
        limit: int = 50,
    ) -> List[LedgerTransaction]:
        """One page of transactions with their assets attached (two queries, no per-row lookups)."""
        if not league_ids:
            return []
        where, params = self._transaction_where(league_ids, filters)
        rows = await self._fetchall(
            f"""
            SELECT t.id, t.league_id, t.season, t.week, t.type, t.status, t.created_at_ms, t.raw_json
            FROM ledger_transaction t
            WHERE {where}
            ORDER BY t.season DESC, t.week DESC, t.created_at_ms DESC, t.id DESC
            LIMIT ? OFFSET ?
            """,
            params + [limit, offset],
        )
        transactions = [
            LedgerTransaction(
                id=r["id"],
                league_id=r["league_id"],
                season=r["season"],
                week=r["week"],
                type=r["type"],
                status=r["status"],
                created_at=_ms_to_datetime(r["created_at_ms"]),
                raw=json.loads(r["raw_json"]),
            )
            for r in rows
        ]
        assets = await self.get_assets_for_transactions([t.id for t in transactions])
        for t in transactions:
            t.assets = assets.get(t.id, [])
        return transactions

    async def get_assets_for_transactions(self, transaction_ids: List[str]) -> Dict[str, List[TransactionAsset]]:
        if not transaction_ids:
            return {}
        rows = await self._fetchall(
            f"SELECT {ASSET_COLUMNS} FROM transaction_asset "
            f"WHERE transaction_id IN ({_placeholders(transaction_ids)}) ORDER BY id",
            transaction_ids,
        )
        by_tx: Dict[str, List[TransactionAsset]] = {}
        for r in rows:
            by_tx.setdefault(r["transaction_id"], []).append(TransactionAsset(**dict(r)))
        return by_tx

    async def distinct_values(self, league_ids: List[str], filters: TransactionFilters) -> Dict[str, List[Any]]:
        """Distinct seasons, types and roster ids across every transaction matching the filters."""
        if not league_ids:
            return {"seasons": [], "types": [], "teams": []}
        where, params = self._transaction_where(league_ids, filters)
        seasons = await self._fetchall(
            f"SELECT DISTINCT t.season FROM ledger_transaction t WHERE {where} ORDER BY t.season DESC", params
        )
        types = await self._fetchall(
            f"SELECT DISTINCT t.type FROM ledger_transaction t WHERE {where} ORDER BY t.type", params
        )
        teams = await self._fetchall(
            f"""
            SELECT DISTINCT roster_id FROM (
                SELECT a.from_roster_id AS roster_id FROM transaction_asset a
                JOIN ledger_transaction t ON t.id = a.transaction_id WHERE {where}
                UNION
                SELECT a.to_roster_id AS roster_id FROM transaction_asset a
                JOIN ledger_transaction t ON t.id = a.transaction_id WHERE {where}
            ) WHERE roster_id IS NOT NULL ORDER BY roster_id
            """,
            params + params,
        )
        return {
            "seasons": [r["season"] for r in seasons],
            "types": [r["type"] for r in types],
            "teams": [r["roster_id"] for r in teams],
        }


def now_ms() -> int:
    return int(time.time() * 1000)
