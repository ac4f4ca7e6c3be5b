import asyncio
import logging
import warnings
from typing import Any, Dict, List, Optional, Tuple

from ..client import SleeperClient
from ..database import LedgerStore
from ..errors import DataIntegrityWarning
from ..models.ledger import (
    LedgerPlayer,
    FaabLine,
    LedgerTransaction,
    SimpleMoves,
    TradeLine,
    TradeMoves,
    TransactionAsset,
    TransactionView,
)
from ..models.sleeper import Draft, Pick
from .movements import to_int

logger = logging.getLogger(__name__)

NO_TEAM = "—"

RosterKey = Tuple[str, int, int]
AssetKey = Tuple[str, int]


def pretty_type(type_: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in type_.split("_") if w)


def synthetic_roster_label(roster_id: int) -> str:
    return f"Roster {roster_id}"


def player_label(player_id: str, players: Dict[str, LedgerPlayer]) -> str:
    player = players.get(player_id)
    if player is None or not player.full_name:
        return f"Player {player_id}"
    parts = [p for p in (player.position, player.team) if p]
    return f"{player.full_name} ({', '.join(parts)})" if parts else player.full_name


def find_raw_pick(raw: Dict[str, Any], asset: TransactionAsset) -> Optional[Dict[str, Any]]:
    """
    The raw draft_picks entry an asset row was derived from.

    Matched on season, round and the owner / previous owner roster ids; if
    that fails, on season and round alone. Two picks of the same round held
    by one roster are indistinguishable at that point and the first wins.
    """
    entries = raw.get("draft_picks") or []
    if not isinstance(entries, list):
        return None
    same_slot = [
        p for p in entries
        if isinstance(p, dict)
        and to_int(p.get("season")) == asset.pick_season
        and to_int(p.get("round")) == asset.pick_round
    ]
    for p in same_slot:
        owner = to_int(p.get("owner_id"))
        previous = to_int(p.get("previous_owner_id"))
        if (asset.to_roster_id is None or owner == asset.to_roster_id) and (
            asset.from_roster_id is None or previous == asset.from_roster_id
        ):
            return p
    return same_slot[0] if same_slot else None


def original_owner_of(raw_pick: Optional[Dict[str, Any]]) -> Optional[int]:
    # An explicit original_owner_id wins; Sleeper's roster_id is the original slot owner otherwise.
    if not raw_pick:
        return None
    explicit = to_int(raw_pick.get("original_owner_id"))
    return explicit if explicit is not None else to_int(raw_pick.get("roster_id"))


def pick_context(
    pick_season: int,
    transaction: LedgerTransaction,
    season_to_league: Dict[int, str],
) -> Tuple[str, int]:
    """
    League-season whose rosters name the original owner of a pick.

    The chain node for the pick's own season when synced; otherwise (a pick in
    a season the league has not rolled over into yet) the transaction's own
    league-season, which always exists.
    """
    league_id = season_to_league.get(pick_season)
    if league_id is not None:
        return league_id, pick_season
    return transaction.league_id, transaction.season


class DraftLookupCache:
    """Request-scoped memo of completed drafts and their picks per (league, season)."""

    def __init__(self, client: SleeperClient):
        self.client = client
        self._drafts: Dict[Tuple[str, int], Optional[Draft]] = {}
        self._picks: Dict[str, List[Pick]] = {}

    async def season_draft(self, league_id: str, season: int) -> Optional[Draft]:
        key = (league_id, season)
        if key not in self._drafts:
            drafts = [Draft(**d) for d in await self.client.get_league_drafts(league_id)]
            completed = [
                d for d in drafts
                if d.status == "complete" and (d.season is None or to_int(d.season) == season)
            ]
            completed.sort(key=lambda d: 0 if _is_rookie_draft(d) else 1)
            self._drafts[key] = completed[0] if completed else None
        return self._drafts[key]

    async def draft_picks(self, draft_id: str) -> List[Pick]:
        if draft_id not in self._picks:
            self._picks[draft_id] = [Pick(**p) for p in await self.client.get_draft_picks(draft_id)]
        return self._picks[draft_id]

    async def selected_player(self, league_id: str, season: int, round_: int, roster_id: int) -> Optional[str]:
        """Player taken with ``roster_id``'s original pick in ``round_``, if the draft has happened."""
        draft = await self.season_draft(league_id, season)
        if draft is None:
            return None
        picks = [p for p in await self.draft_picks(draft.draft_id) if p.round == round_ and p.player_id]
        slot_to_roster = draft.slot_to_roster_id or {}
        for p in picks:
            if p.draft_slot is not None and to_int(slot_to_roster.get(str(p.draft_slot))) == roster_id:
                return p.player_id
        for p in picks:
            if p.roster_id == roster_id:
                return p.player_id
        return None


def _is_rookie_draft(draft: Draft) -> bool:
    name = str((draft.metadata or {}).get("name", ""))
    return "rookie" in (draft.type or "").lower() or "rookie" in name.lower()


class LabelResolver:
    """
    Turns one page of ledger transactions into display view-models.

    All lookups are batched per page: rosters for every (league, season)
    involved, their owners, and every referenced player are each fetched with
    a single id-set query. Roster labels are always keyed by
    (league_id, season, roster_id).
    """

    def __init__(
        self,
        store: LedgerStore,
        client: Optional[SleeperClient] = None,
        enrich_drafted_players: bool = False,
    ):
        self.store = store
        self.client = client
        self.enrich_drafted_players = enrich_drafted_players and client is not None
        self._roster_labels: Dict[RosterKey, str] = {}
        self._players: Dict[str, LedgerPlayer] = {}
        self._current_owner_labels: Dict[int, Optional[str]] = {}

    def roster_label(self, league_id: str, season: int, roster_id: Optional[int]) -> str:
        if roster_id is None:
            return NO_TEAM
        return self._roster_labels.get((league_id, season, roster_id)) or synthetic_roster_label(roster_id)

    async def load(
        self,
        transactions: List[LedgerTransaction],
        season_to_league: Dict[int, str],
        extra_pairs: Tuple[Tuple[str, int], ...] = (),
    ) -> None:
        pairs = {(t.league_id, t.season) for t in transactions} | set(extra_pairs)
        for t in transactions:
            for a in t.assets:
                if a.kind == "pick" and a.pick_season is not None:
                    pairs.add(pick_context(a.pick_season, t, season_to_league))
        player_ids = {a.player_id for t in transactions for a in t.assets if a.player_id}

        rosters, players = await asyncio.gather(
            self.store.get_rosters_for_pairs(pairs),
            self.store.get_players_by_ids(player_ids),
        )
        users = await self.store.get_users_by_ids(r.owner_id for r in rosters if r.owner_id)

        user_names = {u.user_id: u.display_name or u.username or u.user_id for u in users}
        for r in rosters:
            name = user_names.get(r.owner_id) if r.owner_id else None
            if name:
                self._roster_labels[(r.league_id, r.season, r.roster_id)] = name
        self._players.update({p.player_id: p for p in players})

    async def _current_owner_label(self, roster_id: int, current: Optional[Tuple[str, int]]) -> Optional[str]:
        if current is None:
            return None
        if roster_id not in self._current_owner_labels:
            label = self._roster_labels.get((current[0], current[1], roster_id))
            if label is None:
                roster = await self.store.get_roster(current[0], current[1], roster_id)
                if roster is not None and roster.owner_id:
                    users = await self.store.get_users_by_ids([roster.owner_id])
                    if users:
                        label = users[0].display_name or users[0].username or users[0].user_id
            self._current_owner_labels[roster_id] = label
        return self._current_owner_labels[roster_id]

    async def pick_label(
        self,
        transaction: LedgerTransaction,
        asset: TransactionAsset,
        season_to_league: Dict[int, str],
        current: Optional[Tuple[str, int]],
    ) -> Tuple[str, Optional[int]]:
        """Label for a pick asset plus the original owner roster id it was attributed to."""
        season, round_ = asset.pick_season, asset.pick_round
        if season is None or round_ is None:
            return "Pick", None

        original = original_owner_of(find_raw_pick(transaction.raw, asset))
        if original is None:
            warnings.warn(DataIntegrityWarning(
                f"No original owner for {season} R{round_} pick in transaction {transaction.id}"
            ))
            return f"{season} R{round_}", None

        league_id, context_season = pick_context(season, transaction, season_to_league)
        owner = self._roster_labels.get((league_id, context_season, original))
        if owner is None:
            owner = await self._current_owner_label(original, current)
        if owner is None:
            warnings.warn(DataIntegrityWarning(
                f"Unresolved owner of roster {original} for {season} R{round_} pick in transaction {transaction.id}"
            ))
            owner = synthetic_roster_label(original)
        return f"{season} R{round_} ({owner} pick)", original

    async def _drafted_player_suffixes(
        self,
        picks: Dict[AssetKey, Tuple[TransactionAsset, int]],
        season_to_league: Dict[int, str],
    ) -> Dict[AssetKey, str]:
        """Best-effort ' → Player' suffixes for picks whose draft has already happened."""
        cache = DraftLookupCache(self.client)
        selected: Dict[AssetKey, str] = {}
        for key, (asset, original) in picks.items():
            league_id = season_to_league.get(asset.pick_season)
            if league_id is None:
                continue
            try:
                player_id = await cache.selected_player(league_id, asset.pick_season, asset.pick_round, original)
            except Exception as e:
                logger.debug(f"Drafted player lookup skipped for {asset.pick_season} R{asset.pick_round}: {e}")
                continue
            if player_id:
                selected[key] = player_id

        missing = {pid for pid in selected.values() if pid not in self._players}
        if missing:
            try:
                self._players.update({p.player_id: p for p in await self.store.get_players_by_ids(missing)})
            except Exception as e:
                logger.debug(f"Drafted player names unavailable: {e}")
        return {key: f" → {player_label(pid, self._players)}" for key, pid in selected.items()}

    async def resolve(
        self,
        transactions: List[LedgerTransaction],
        season_to_league: Dict[int, str],
    ) -> List[TransactionView]:
        current = None
        if season_to_league:
            newest = max(season_to_league)
            current = (season_to_league[newest], newest)

        await self.load(transactions, season_to_league, extra_pairs=(current,) if current else ())

        asset_labels: Dict[AssetKey, str] = {}
        resolved_picks: Dict[AssetKey, Tuple[TransactionAsset, int]] = {}
        for t in transactions:
            for i, a in enumerate(t.assets):
                key = (t.id, i)
                if a.kind == "pick":
                    label, original = await self.pick_label(t, a, season_to_league, current)
                    asset_labels[key] = label
                    if original is not None and a.pick_round is not None:
                        resolved_picks[key] = (a, original)
                elif a.kind == "faab":
                    asset_labels[key] = f"FAAB ${a.faab_amount or 0}"
                elif a.player_id:
                    asset_labels[key] = player_label(a.player_id, self._players)
                else:
                    asset_labels[key] = a.kind

        if self.enrich_drafted_players and resolved_picks:
            try:
                suffixes = await self._drafted_player_suffixes(resolved_picks, season_to_league)
            except Exception as e:
                logger.debug(f"Drafted player enrichment skipped: {e}")
                suffixes = {}
            for key, suffix in suffixes.items():
                asset_labels[key] += suffix

        return [self._view(t, asset_labels) for t in transactions]

    def _teams_label(self, transaction: LedgerTransaction) -> str:
        involved: List[int] = []
        for a in transaction.assets:
            for rid in (a.from_roster_id, a.to_roster_id):
                if rid is not None and rid not in involved:
                    involved.append(rid)
        labels: List[str] = []
        for rid in involved:
            label = self.roster_label(transaction.league_id, transaction.season, rid)
            if label not in labels:
                labels.append(label)
        if not labels:
            return NO_TEAM
        return (" ↔ " if transaction.type == "trade" else ", ").join(labels)

    def _view(self, transaction: LedgerTransaction, asset_labels: Dict[AssetKey, str]) -> TransactionView:
        if transaction.type == "trade":
            moves = self._trade_moves(transaction, asset_labels)
        else:
            moves = self._simple_moves(transaction, asset_labels)
        return TransactionView(
            id=transaction.id,
            league_id=transaction.league_id,
            season=transaction.season,
            week=transaction.week,
            type=transaction.type,
            type_label=pretty_type(transaction.type),
            date=transaction.created_at.isoformat() if transaction.created_at else None,
            teams_label=self._teams_label(transaction),
            moves=moves,
        )

    def _trade_moves(self, transaction: LedgerTransaction, asset_labels: Dict[AssetKey, str]) -> TradeMoves:
        received: Dict[int, List[str]] = {}
        sent: Dict[int, List[str]] = {}
        for i, a in enumerate(transaction.assets):
            if a.from_roster_id is None or a.to_roster_id is None or a.from_roster_id == a.to_roster_id:
                continue
            label = asset_labels[(transaction.id, i)]
            received.setdefault(a.to_roster_id, []).append(label)
            sent.setdefault(a.from_roster_id, []).append(label)

        lines = [
            TradeLine(
                roster_id=rid,
                team=self.roster_label(transaction.league_id, transaction.season, rid),
                received=received.get(rid, []),
                sent=sent.get(rid, []),
            )
            for rid in sorted(set(received) | set(sent))
        ]
        return TradeMoves(lines=lines)

    def _simple_moves(self, transaction: LedgerTransaction, asset_labels: Dict[AssetKey, str]) -> SimpleMoves:
        bid = None
        if transaction.type == "waiver":
            settings = transaction.raw.get("settings")
            if isinstance(settings, dict):
                bid = to_int(settings.get("waiver_bid"))
            if bid is None:
                amounts = [a.faab_amount for a in transaction.assets if a.kind == "faab" and a.faab_amount is not None]
                bid = sum(amounts) if amounts else None

        adds: List[str] = []
        drops: List[str] = []
        faab_by_roster: Dict[int, int] = {}
        for i, a in enumerate(transaction.assets):
            if a.kind == "faab" and a.to_roster_id is not None:
                faab_by_roster[a.to_roster_id] = faab_by_roster.get(a.to_roster_id, 0) + (a.faab_amount or 0)
            if a.kind != "player":
                continue
            label = asset_labels[(transaction.id, i)]
            if a.to_roster_id is not None and a.from_roster_id is None:
                adds.append(f"{label} (${bid})" if bid is not None else label)
            elif a.from_roster_id is not None and a.to_roster_id is None:
                drops.append(label)

        faab = [
            FaabLine(
                roster_id=rid,
                team=self.roster_label(transaction.league_id, transaction.season, rid),
                amount=amount,
            )
            for rid, amount in sorted(faab_by_roster.items())
        ]
        return SimpleMoves(adds=adds, drops=drops, faab=faab)
