# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Plan Sync Coordinator - resumable Planning Center plan/song sync under a time ceiling
"""
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Optional

import config
from auth.token_vault import CredentialError, TokenVault
from pco_ops.fetcher import PCOClient, UpstreamError
from storage.supabase_store import StorageError, eq, is_null
from sync.accumulator import PlanAccumulator, song_record
from sync.budget import ExecutionBudget
from sync.classification import CampusClassifier
from sync.collector import PlanCollector
from sync.errors import SyncAlreadyRunningError
from sync.progress import Checkpoint, ProgressTracker
from sync.reconcile import Reconciler
from sync.window import SyncOptions, SyncWindow, determine_window
from utils.logger import StructuredLogger
from utils.timezone import utc_now, to_iso

logger = logging.getLogger(__name__)
sync_logger = StructuredLogger(__name__)

_active_runs = set()
_active_runs_lock = threading.Lock()


@contextmanager
def single_run(key):
    """Reject a second run for the same progress key in this process"""
    with _active_runs_lock:
        if key in _active_runs:
            raise SyncAlreadyRunningError(f"A sync is already running for {key[1]} {key[2] or ''}".strip())
        _active_runs.add(key)
    try:
        yield
    finally:
        with _active_runs_lock:
            _active_runs.discard(key)


def new_results() -> Dict:
    return {
        'plans_synced': 0,
        'songs_synced': 0,
        'links_synced': 0,
        'library_songs_synced': 0,
        'bpm_updated': 0,
        'service_types_processed': 0,
        'errors': [],
        'timed_out': False,
        'resume_info': None,
    }


class PlanSyncCoordinator:
    """
    Walks allowed service types and their plans in order, flushing to the
    reconciler in bounded batches and checkpointing (service type, plan) so a
    run cut short by the time ceiling resumes where it stopped.
    """

    def __init__(self, store, client: PCOClient, vault: TokenVault,
                 budget_factory: Callable[[], ExecutionBudget] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 now: Callable[[], datetime] = utc_now,
                 flush_threshold: int = config.FLUSH_THRESHOLD_PLANS):
        self.store = store
        self.client = client
        self.vault = vault
        self.budget_factory = budget_factory or (lambda: ExecutionBudget(config.SYNC_TIME_BUDGET_SECONDS))
        self.sleep = sleep
        self.now = now
        self.flush_threshold = flush_threshold
        self.collector = PlanCollector(client, sleep)
        self.reconciler = Reconciler(store)

    def run(self, connection: Dict, options: SyncOptions) -> Dict:
        budget = self.budget_factory()
        started = time.monotonic()

        if options.force_full_sync:
            logger.info(f"Force full sync requested for connection {connection['id']}; clearing last_sync_at")
            self.store.update('pco_connections', {'last_sync_at': None}, [eq('id', connection['id'])])
            connection['last_sync_at'] = None

        token = self.vault.get_valid_access_token(connection)
        window = determine_window(options, connection.get('last_sync_at'), self.now())
        key = (connection['user_id'], window.sync_type, window.start_year, window.end_year)

        with single_run(key):
            tracker = ProgressTracker(self.store, connection['user_id'], window, self.now)
            checkpoint = tracker.open(options.resume)

            sync_logger.log_sync_event('plan_sync_started', {
                'connection_id': connection['id'],
                'window': window.kind,
                'after': window.after,
                'before': window.before,
                'resumed': checkpoint.resumed,
            })

            results = new_results()
            try:
                self._execute(token, connection, window, tracker, checkpoint, budget, results)
            except (CredentialError, StorageError) as e:
                tracker.fail(str(e))
                raise

        duration = time.monotonic() - started
        sync_logger.log_performance('plan_sync', duration, results['plans_synced'],
                                    success=not results['errors'])
        event = 'plan_sync_timeout' if results['timed_out'] else 'plan_sync_completed'
        sync_logger.log_sync_event(event, {
            'connection_id': connection['id'],
            'plans_synced': results['plans_synced'],
            'songs_synced': results['songs_synced'],
            'error_count': len(results['errors']),
            'resume_info': results['resume_info'],
        })
        return results

    def _flush(self, accumulator: PlanAccumulator, results: Dict):
        outcome = self.reconciler.reconcile(accumulator)
        results['plans_synced'] += outcome.plans_written
        results['songs_synced'] += outcome.songs_written
        results['links_synced'] += outcome.links_written
        results['errors'].extend(outcome.errors)
        accumulator.clear()

    def _stop_for_time(self, accumulator, tracker, results, service_type_index, plan_index):
        self._flush(accumulator, results)
        tracker.checkpoint(service_type_index, plan_index, results['plans_synced'], results['songs_synced'])
        results['timed_out'] = True
        results['resume_info'] = {'service_type_index': service_type_index, 'plan_index': plan_index}
        logger.warning(f"⏳ Approaching time limit; checkpointed at service type {service_type_index}, "
                       f"plan {plan_index}")

    def _execute(self, token: str, connection: Dict, window: SyncWindow, tracker: ProgressTracker,
                 checkpoint: Checkpoint, budget: ExecutionBudget, results: Dict):
        campuses = self.store.select('campuses', 'id, name')
        classifier = CampusClassifier(campuses, connection.get('campus_id'))

        try:
            service_types = self.collector.allowed_service_types(token, classifier)
        except UpstreamError as e:
            message = f"Could not list service types: {e}"
            logger.error(f"❌ {message}")
            results['errors'].append(message)
            tracker.fail(message)
            return

        tracker.set_total(len(service_types))

        if checkpoint.service_type_index >= len(service_types) and not checkpoint.at_start:
            logger.warning(f"Resume index {checkpoint.service_type_index} is past the "
                           f"{len(service_types)} service types; restarting from the beginning")
            checkpoint = tracker.restart()

        if checkpoint.at_start:
            self.sync_song_library(token, budget, results)

        accumulator = PlanAccumulator()
        synced_at = to_iso(self.now())

        for i in range(checkpoint.service_type_index, len(service_types)):
            service_type = service_types[i]
            name = (service_type.get('attributes') or {}).get('name') or ''
            start_plan = checkpoint.plan_index if i == checkpoint.service_type_index else 0

            if budget.exhausted():
                self._stop_for_time(accumulator, tracker, results, i, start_plan)
                return

            tracker.checkpoint(i, start_plan, results['plans_synced'], results['songs_synced'])
            if i > checkpoint.service_type_index:
                self.sleep(config.SERVICE_TYPE_PACING_SECONDS)

            campus_id = classifier.campus_for(name)
            plans = self.collector.fetch_plans(token, service_type, window)
            logger.info(f"Service type {i + 1}/{len(service_types)} '{name}': {len(plans)} plans")

            for j in range(start_plan, len(plans)):
                if budget.exhausted():
                    self._stop_for_time(accumulator, tracker, results, i, j)
                    return

                error = self.collector.collect_plan(token, service_type, plans[j], campus_id,
                                                    accumulator, synced_at)
                if error:
                    results['errors'].append(error)
                self.sleep(config.PLAN_PACING_SECONDS)

                if accumulator.plan_count >= self.flush_threshold:
                    self._flush(accumulator, results)
                    tracker.checkpoint(i, j + 1, results['plans_synced'], results['songs_synced'])

            results['service_types_processed'] += 1

        self._flush(accumulator, results)
        tracker.complete(results['plans_synced'], results['songs_synced'])
        self.store.update('pco_connections', {'last_sync_at': to_iso(self.now())},
                          [eq('id', connection['id'])])
        logger.info(f"✅ Plan sync complete: {results['plans_synced']} plans, "
                    f"{results['songs_synced']} songs, {len(results['errors'])} errors")

    def sync_song_library(self, token: str, budget: ExecutionBudget, results: Dict):
        """Upsert the whole song library, then backfill missing BPMs while time allows"""
        songs = self.client.fetch_all_pages(token, '/services/v2/songs?per_page=100',
                                            max_pages=config.SONG_LIBRARY_MAX_PAGES)
        records = [record for record in (song_record(song) for song in songs) if record]
        written, errors = self.reconciler.upsert_batch('songs', records, 'pco_song_id')
        results['library_songs_synced'] += written
        results['errors'].extend(errors)
        logger.info(f"Song library: {written} of {len(records)} songs upserted")

        self.backfill_bpm(token, budget, results)

    def backfill_bpm(self, token: str, budget: ExecutionBudget, results: Dict):
        try:
            missing = self.store.select('songs', 'id, pco_song_id', [is_null('bpm')],
                                        limit=config.BPM_FETCH_LIMIT)
        except StorageError as e:
            results['errors'].append(f"BPM lookup failed: {e}")
            return

        for row in missing:
            if budget.exhausted(reserve=config.BPM_BUDGET_RESERVE_SECONDS):
                logger.info("Stopping BPM backfill to leave time for plans")
                break

            self.sleep(config.BPM_FETCH_PACING_SECONDS)
            try:
                document = self.client.fetch_one(
                    token, f"/services/v2/songs/{row['pco_song_id']}/arrangements?per_page=1")
            except UpstreamError as e:
                logger.warning(f"⚠️ Arrangements for song {row['pco_song_id']} unavailable: {e}")
                continue

            bpm = _first_arrangement_bpm(document)
            if bpm is None:
                continue

            try:
                self.store.update('songs', {'bpm': bpm}, [eq('id', row['id'])])
                results['bpm_updated'] += 1
            except StorageError as e:
                results['errors'].append(f"BPM update failed for song {row['pco_song_id']}: {e}")


def _first_arrangement_bpm(document: Dict) -> Optional[float]:
    data = document.get('data') or []
    if not data:
        return None
    bpm = (data[0].get('attributes') or {}).get('bpm')
    if isinstance(bpm, bool) or not isinstance(bpm, (int, float)) or bpm <= 0:
        return None
    return bpm
