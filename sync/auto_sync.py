# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Auto Sync - scheduled recent-plans sweep across every stored connection
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional

import config
from auth.token_vault import CredentialError, TokenVault
from pco_ops.fetcher import PCOClient, UpstreamError
from storage.supabase_store import StorageError, eq
from sync.accumulator import PlanAccumulator
from sync.classification import CampusClassifier
from sync.collector import PlanCollector
from sync.errors import SetupError
from sync.reconcile import Reconciler
from sync.window import SyncWindow, lookback_window
from utils.logger import StructuredLogger
from utils.timezone import utc_now, to_iso

logger = logging.getLogger(__name__)
sync_logger = StructuredLogger(__name__)

MAX_LOOKBACK_DAYS = 365


def parse_lookback_days(body: Optional[Dict]) -> int:
    value = (body or {}).get('lookback_days')
    if value is None:
        return config.AUTO_SYNC_LOOKBACK_DAYS
    # JSON clients may send 7.0 for 7
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= MAX_LOOKBACK_DAYS:
        raise SetupError(f"lookback_days must be a whole number between 1 and {MAX_LOOKBACK_DAYS}")
    return value


class AutoSync:
    """One failing connection never stops the sweep; its errors stay in its own result"""

    def __init__(self, store, client: PCOClient, vault: TokenVault,
                 sleep: Callable[[float], None] = time.sleep,
                 now: Callable[[], datetime] = utc_now,
                 max_workers: int = config.AUTO_SYNC_MAX_WORKERS):
        self.store = store
        self.client = client
        self.vault = vault
        self.sleep = sleep
        self.now = now
        self.max_workers = max(1, max_workers)
        self.collector = PlanCollector(client, sleep)
        self.reconciler = Reconciler(store)

    def run(self, lookback_days: int = config.AUTO_SYNC_LOOKBACK_DAYS) -> Dict:
        started = time.monotonic()
        connections = self.store.select('pco_connections', '*')
        campuses = self.store.select('campuses', 'id, name')
        window = lookback_window(lookback_days, self.now())
        logger.info(f"🔄 Auto sync of {len(connections)} connections from {window.after} "
                    f"({lookback_days} day lookback)")

        def sync_one(connection: Dict) -> Dict:
            return self.sync_connection(connection, campuses, window)

        if self.max_workers > 1 and len(connections) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(sync_one, connections))
        else:
            results = [sync_one(connection) for connection in connections]

        duration_ms = int((time.monotonic() - started) * 1000)
        sync_logger.log_sync_event('auto_sync_completed', {
            'connections': len(connections),
            'duration_ms': duration_ms,
            'failed_connections': sum(1 for r in results if r['errors']),
        })
        return {
            'success': True,
            'duration_ms': duration_ms,
            'lookback_days': lookback_days,
            'results': results,
        }

    def sync_connection(self, connection: Dict, campuses: List[Dict], window: SyncWindow) -> Dict:
        result = {
            'connection_id': connection['id'],
            'organization': connection.get('pco_organization_name'),
            'plans_synced': 0,
            'songs_synced': 0,
            'errors': [],
        }

        try:
            token = self.vault.get_valid_access_token(connection)
        except CredentialError as e:
            result['errors'].append(f"Credentials: {e}")
            result['needs_reauthorization'] = e.needs_reauthorization
            return result
        except StorageError as e:
            result['errors'].append(f"Could not store refreshed credentials: {e}")
            return result

        classifier = CampusClassifier(campuses, connection.get('campus_id'))
        try:
            service_types = self.collector.allowed_service_types(token, classifier)
        except UpstreamError as e:
            result['errors'].append(f"Could not list service types: {e}")
            return result

        accumulator = PlanAccumulator()
        synced_at = to_iso(self.now())
        for service_type in service_types:
            name = (service_type.get('attributes') or {}).get('name') or ''
            campus_id = classifier.campus_for(name)
            plans = self.collector.fetch_plans(token, service_type, window, max_pages=config.AUTO_SYNC_MAX_PAGES)
            for plan in plans:
                error = self.collector.collect_plan(token, service_type, plan, campus_id, accumulator, synced_at)
                if error:
                    result['errors'].append(error)
                self.sleep(config.AUTO_SYNC_PLAN_PACING_SECONDS)

        outcome = self.reconciler.reconcile(accumulator)
        result['plans_synced'] = outcome.plans_written
        result['songs_synced'] = outcome.songs_written
        result['errors'].extend(outcome.errors)

        try:
            self.store.update('pco_connections', {'last_sync_at': to_iso(self.now())},
                              [eq('id', connection['id'])])
        except StorageError as e:
            result['errors'].append(f"last_sync_at update failed: {e}")

        logger.info(f"Connection {connection['id']}: {result['plans_synced']} plans, "
                    f"{result['songs_synced']} songs, {len(result['errors'])} errors")
        return result
