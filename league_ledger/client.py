import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import API_URL
from .errors import ExternalApiError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class SleeperClient:
    """
    Read-only accessors for the Sleeper API.

    One instance wraps one ``httpx.AsyncClient``; construct it once per
    process (or per test) and close it with ``aclose``.
    """

    def __init__(
        self,
        base_url: str = API_URL,
        timeout: float = 20.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.75,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"User-Agent": "league-ledger/0.1"},
        )

    async def __aenter__(self) -> "SleeperClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get(self, path: str) -> Any:
        """
        A generic GET against the Sleeper API with timeout and retry.

        Timeouts, network errors and 429/5xx responses are retried with a
        linear backoff; any other non-success status fails straight away.
        """
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = await self._http.get(path)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt < self.retry_attempts:
                    logger.warning(f"Retrying {url} after {type(e).__name__} (attempt {attempt})")
                    await asyncio.sleep(self.retry_backoff * attempt)
                    continue
                raise ExternalApiError(url, f"{type(e).__name__}: {e}") from e

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.retry_attempts:
                logger.warning(f"Retrying {url} after status {response.status_code} (attempt {attempt})")
                await asyncio.sleep(self.retry_backoff * attempt)
                continue

            if response.is_error:
                raise ExternalApiError(url, response.text[:200], status_code=response.status_code)

            try:
                return response.json()
            except ValueError as e:
                raise ExternalApiError(url, f"invalid JSON: {e}", status_code=response.status_code) from e

        # Only reachable when retry_attempts < 1, which __init__ prevents.
        raise ExternalApiError(url, "no attempts made")

    async def get_league(self, league_id: str) -> Optional[Dict[str, Any]]:
        # Sleeper answers 200 with a JSON null for unknown league ids.
        return await self.get(f"/league/{league_id}")

    async def get_league_users(self, league_id: str) -> List[Dict[str, Any]]:
        return await self.get(f"/league/{league_id}/users") or []

    async def get_league_rosters(self, league_id: str) -> List[Dict[str, Any]]:
        return await self.get(f"/league/{league_id}/rosters") or []

    async def get_league_matchups(self, league_id: str, week: int) -> List[Dict[str, Any]]:
        return await self.get(f"/league/{league_id}/matchups/{week}") or []

    async def get_league_transactions(self, league_id: str, week: int) -> List[Dict[str, Any]]:
        try:
            return await self.get(f"/league/{league_id}/transactions/{week}") or []
        except ExternalApiError as e:
            if e.status_code == 404:
                return []
            raise

    async def get_league_drafts(self, league_id: str) -> List[Dict[str, Any]]:
        return await self.get(f"/league/{league_id}/drafts") or []

    async def get_draft_picks(self, draft_id: str) -> List[Dict[str, Any]]:
        return await self.get(f"/draft/{draft_id}/picks") or []

    async def get_all_players(self) -> Dict[str, Dict[str, Any]]:
        return await self.get("/players/nfl") or {}
