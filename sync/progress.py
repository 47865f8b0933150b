# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Progress Tracker - durable sync_progress checkpoints for resumable plan syncs
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from storage.supabase_store import StorageError, eq, is_null
from sync.window import SyncWindow
from utils.timezone import utc_now, to_iso

logger = logging.getLogger(__name__)

TABLE = 'sync_progress'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'


@dataclass
class Checkpoint:
    service_type_index: int = 0
    plan_index: int = 0
    plans_processed: int = 0
    songs_processed: int = 0
    resumed: bool = False

    @property
    def at_start(self) -> bool:
        return self.service_type_index == 0 and self.plan_index == 0


class ProgressTracker:
    """
    One sync_progress row per (user, sync type, start year, end year).

    Counts stored on the row are cumulative across resumed runs: the tracker
    remembers what earlier runs recorded and adds this run's totals to it.
    """

    def __init__(self, store, user_id: str, window: SyncWindow,
                 now: Callable[[], datetime] = utc_now):
        self.store = store
        self.user_id = user_id
        self.window = window
        self.now = now
        self.record_id: Optional[str] = None
        self.base_plans = 0
        self.base_songs = 0

    def _key_filters(self) -> List:
        filters = [eq('user_id', self.user_id), eq('sync_type', self.window.sync_type)]
        for column, value in (('start_year', self.window.start_year), ('end_year', self.window.end_year)):
            filters.append(eq(column, value) if value is not None else is_null(column))
        return filters

    def _fresh_values(self) -> Dict:
        return {
            'status': IN_PROGRESS,
            'current_service_type_index': 0,
            'current_plan_index': 0,
            'total_plans_processed': 0,
            'total_songs_processed': 0,
            'error_message': None,
            'started_at': to_iso(self.now()),
            'completed_at': None,
        }

    def open(self, resume: bool) -> Checkpoint:
        """Load the checkpoint to resume from, or reset/create the row for a fresh run"""
        rows = self.store.select(TABLE, '*', self._key_filters(), order='started_at.desc')
        active = next((r for r in rows if r.get('status') == IN_PROGRESS), None)

        if resume and active:
            self.record_id = active['id']
            self.base_plans = active.get('total_plans_processed') or 0
            self.base_songs = active.get('total_songs_processed') or 0
            checkpoint = Checkpoint(
                service_type_index=active.get('current_service_type_index') or 0,
                plan_index=active.get('current_plan_index') or 0,
                plans_processed=self.base_plans,
                songs_processed=self.base_songs,
                resumed=True,
            )
            logger.info(f"🔄 Resuming {self.window.sync_type} sync from service type "
                        f"{checkpoint.service_type_index}, plan {checkpoint.plan_index}")
            return checkpoint

        existing = active or (rows[0] if rows else None)
        if existing:
            self.record_id = existing['id']
            self.store.update(TABLE, self._fresh_values(), [eq('id', self.record_id)])
        else:
            record = {
                'user_id': self.user_id,
                'sync_type': self.window.sync_type,
                'start_year': self.window.start_year,
                'end_year': self.window.end_year,
                'total_service_types': 0,
                **self._fresh_values(),
            }
            created = self.store.insert(TABLE, [record])
            self.record_id = created[0]['id'] if created else None

        return Checkpoint()

    def _write(self, values: Dict, action: str) -> bool:
        if not self.record_id:
            return False
        try:
            self.store.update(TABLE, values, [eq('id', self.record_id)])
            return True
        except StorageError as e:
            logger.error(f"Failed to {action} sync progress {self.record_id}: {e}")
            return False

    def restart(self) -> Checkpoint:
        """Drop a stale checkpoint and start the window again from the top"""
        self.base_plans = 0
        self.base_songs = 0
        self._write(self._fresh_values(), 'restart')
        return Checkpoint()

    def set_total(self, total_service_types: int) -> bool:
        return self._write({'total_service_types': total_service_types}, 'record total for')

    def checkpoint(self, service_type_index: int, plan_index: int,
                   run_plans: int, run_songs: int) -> bool:
        return self._write({
            'current_service_type_index': service_type_index,
            'current_plan_index': plan_index,
            'total_plans_processed': self.base_plans + run_plans,
            'total_songs_processed': self.base_songs + run_songs,
        }, 'checkpoint')

    def complete(self, run_plans: int, run_songs: int) -> bool:
        return self._write({
            'status': COMPLETED,
            'total_plans_processed': self.base_plans + run_plans,
            'total_songs_processed': self.base_songs + run_songs,
            'completed_at': to_iso(self.now()),
        }, 'complete')

    def fail(self, message: str) -> bool:
        """Record why a run aborted; the row stays in_progress so it can be resumed"""
        return self._write({'error_message': message[:500]}, 'record failure for')
