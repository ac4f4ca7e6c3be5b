from typing import Any, Dict, Optional


class LeagueLedgerError(Exception):
    pass


class ConfigurationError(LeagueLedgerError):
    """A required setting (usually the starting league id) is missing."""


class NotFoundError(LeagueLedgerError):
    pass


class ExternalApiError(LeagueLedgerError):
    """Non-success response or network failure from the Sleeper API."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        status = f" {status_code}" if status_code is not None else ""
        super().__init__(f"Sleeper API error{status} for {url}: {message}")


class SyncError(LeagueLedgerError):
    """A season sync stopped part way through.

    ``progress`` holds the counters reached before the failure; everything
    counted there is already committed and a re-run picks up the rest.
    """

    def __init__(self, league_id: str, progress: Dict[str, Any], cause: Exception):
        self.league_id = league_id
        self.progress = progress
        self.cause = cause
        super().__init__(f"Sync of league {league_id} failed: {cause}")


class DataIntegrityWarning(UserWarning):
    """Ledger data could not be fully resolved; a degraded label was used."""
