# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync window selection and request options for plan syncs
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import config
from sync.errors import SetupError
from utils.timezone import parse_timestamp

HISTORICAL = 'historical'
INCREMENTAL = 'incremental'
FULL = 'full'

MIN_SYNC_YEAR = 2000
MAX_SYNC_YEAR = 2100


@dataclass
class SyncOptions:
    force_full_sync: bool = False
    sync_start_year: Optional[int] = None
    sync_end_year: Optional[int] = None
    resume: bool = False

    @property
    def historical(self) -> bool:
        return self.sync_start_year is not None and self.sync_end_year is not None

    @classmethod
    def from_request(cls, body: Optional[Dict[str, Any]]) -> 'SyncOptions':
        """Validate a request body; raises SetupError(400) when it is malformed"""
        if body is None:
            return cls()
        if not isinstance(body, dict):
            raise SetupError("Request body must be a JSON object")

        options = cls(
            force_full_sync=_as_bool(body.get('force_full_sync'), 'force_full_sync'),
            sync_start_year=_as_year(body.get('sync_start_year'), 'sync_start_year'),
            sync_end_year=_as_year(body.get('sync_end_year'), 'sync_end_year'),
            resume=_as_bool(body.get('resume'), 'resume'),
        )

        if (options.sync_start_year is None) != (options.sync_end_year is None):
            raise SetupError("sync_start_year and sync_end_year must be given together")
        if options.historical and options.sync_start_year > options.sync_end_year:
            raise SetupError("sync_start_year must not be after sync_end_year")

        return options


def _as_bool(value: Any, field: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise SetupError(f"{field} must be a boolean")


def _as_year(value: Any, field: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise SetupError(f"{field} must be a year")
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise SetupError(f"{field} must be a year")
    if not MIN_SYNC_YEAR <= year <= MAX_SYNC_YEAR:
        raise SetupError(f"{field} must be between {MIN_SYNC_YEAR} and {MAX_SYNC_YEAR}")
    return year


@dataclass
class SyncWindow:
    """Date range of plans to pull, as YYYY-MM-DD strings"""
    kind: str
    after: str
    before: Optional[str] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None

    @property
    def sync_type(self) -> str:
        """Progress key type: historical runs keyed by years, everything else shares one key"""
        return HISTORICAL if self.kind == HISTORICAL else INCREMENTAL

    def plans_query(self) -> str:
        if self.before:
            return f"filter=after,before&after={self.after}&before={self.before}&per_page=100"
        return f"filter=after&after={self.after}&per_page=100"


def determine_window(options: SyncOptions, last_sync_at: Optional[str], now: datetime) -> SyncWindow:
    """
    Historical years win; then incremental from the last sync (never further back
    than the incremental lookback); otherwise a full lookback.
    """
    if options.historical:
        return SyncWindow(
            kind=HISTORICAL,
            after=f"{options.sync_start_year}-01-01",
            before=f"{options.sync_end_year}-12-31",
            start_year=options.sync_start_year,
            end_year=options.sync_end_year,
        )

    last_sync = None if options.force_full_sync else parse_timestamp(last_sync_at)
    if last_sync is not None:
        floor = now - timedelta(days=config.INCREMENTAL_LOOKBACK_DAYS)
        after = max(last_sync, floor)
        return SyncWindow(kind=INCREMENTAL, after=after.date().isoformat())

    after = now - timedelta(days=config.FULL_SYNC_LOOKBACK_DAYS)
    return SyncWindow(kind=FULL, after=after.date().isoformat())


def lookback_window(days: int, now: datetime) -> SyncWindow:
    """Window used by the scheduled multi-tenant sweep"""
    return SyncWindow(kind=INCREMENTAL, after=(now - timedelta(days=days)).date().isoformat())
