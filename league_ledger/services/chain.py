import logging
from typing import Awaitable, Callable, List, Optional

from ..client import SleeperClient
from ..database import LedgerStore
from ..errors import ExternalApiError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 15

PreviousLookup = Callable[[str], Awaitable[Optional[str]]]


async def resolve_league_chain(
    previous_of: PreviousLookup,
    start_league_id: str,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> List[str]:
    """
    Walk previous_league_id pointers from ``start_league_id``, newest -> oldest.

    Stops at a missing pointer, at the first id already visited (so a cyclic
    pointer graph terminates) or after ``max_depth`` ids. A failed lookup ends
    the walk with the ids collected so far; the node whose lookup failed is
    kept since its id is already known.
    """
    chain: List[str] = []
    seen = set()
    current: Optional[str] = start_league_id

    while current and len(chain) < max_depth:
        if current in seen:
            logger.warning(f"League chain from {start_league_id} loops back to {current}; stopping")
            break
        seen.add(current)
        chain.append(current)
        try:
            current = await previous_of(current)
        except ExternalApiError as e:
            logger.warning(f"League chain from {start_league_id} truncated at {current}: {e}")
            break

    return chain


def upstream_previous(client: SleeperClient) -> PreviousLookup:
    async def previous_of(league_id: str) -> Optional[str]:
        league = await client.get_league(league_id)
        if not league:
            return None
        return league.get("previous_league_id") or None
    return previous_of


def ledger_previous(store: LedgerStore) -> PreviousLookup:
    """Follow the pointers recorded by sync instead of asking Sleeper."""
    async def previous_of(league_id: str) -> Optional[str]:
        league_season = await store.get_league_season(league_id)
        if league_season is None:
            return None
        return league_season.previous_league_id
    return previous_of
