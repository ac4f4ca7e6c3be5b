import asyncio
from typing import Dict, List, Optional

from ..client import SleeperClient
from ..config import Settings
from ..database import LedgerStore
from ..models.ledger import Facets, TeamFacet, TransactionFilters, TransactionPage
from .chain import ledger_previous, resolve_league_chain
from .labels import LabelResolver

PAGE_SIZE_DEFAULT = 50
PAGE_SIZE_MAX = 200


def parse_csv_ints(value: Optional[str]) -> List[int]:
    if not value:
        return []
    out = []
    for part in value.split(","):
        part = part.strip()
        try:
            out.append(int(part))
        except ValueError:
            continue
    return out


def parse_csv_strings(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


async def get_league_chain(store: LedgerStore, root_league_id: str, max_depth: int) -> List[str]:
    return await resolve_league_chain(ledger_previous(store), root_league_id, max_depth)


async def get_transactions_page(
    store: LedgerStore,
    settings: Settings,
    root_league_id: str,
    filters: TransactionFilters,
    page: int = 1,
    page_size: int = PAGE_SIZE_DEFAULT,
    client: Optional[SleeperClient] = None,
) -> TransactionPage:
    """
    One page of labelled transactions across the whole season chain of ``root_league_id``.

    Facets are computed over every transaction matching ``filters``, not just
    the returned page.
    """
    page = max(1, page)
    page_size = max(1, min(PAGE_SIZE_MAX, page_size))

    league_ids = await get_league_chain(store, root_league_id, settings.read_max_depth)
    league_seasons = await store.get_league_seasons(league_ids)
    season_to_league: Dict[int, str] = {}
    for ls in league_seasons:
        season_to_league.setdefault(ls.season, ls.league_id)

    total_count, rows, distinct = await asyncio.gather(
        store.count_transactions(league_ids, filters),
        store.list_transactions(league_ids, filters, offset=(page - 1) * page_size, limit=page_size),
        store.distinct_values(league_ids, filters),
    )

    resolver = LabelResolver(store, client=client, enrich_drafted_players=settings.enrich_drafted_players)
    items = await resolver.resolve(rows, season_to_league)

    # Team facets are labelled with the newest season's owners, which resolve() has already loaded.
    if season_to_league:
        newest = max(season_to_league)
        context = (season_to_league[newest], newest)
    else:
        context = (root_league_id, 0)
    teams = [
        TeamFacet(roster_id=rid, label=resolver.roster_label(context[0], context[1], rid))
        for rid in distinct["teams"]
    ]

    return TransactionPage(
        root_league_id=root_league_id,
        chain_league_ids=league_ids,
        page=page,
        page_size=page_size,
        total_count=total_count,
        total_pages=max(1, -(-total_count // page_size)),
        items=items,
        facets=Facets(seasons=distinct["seasons"], types=distinct["types"], teams=teams),
    )
