# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Reconciler - idempotent batch writes of accumulated plans, songs and plan links
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

import config
from storage.supabase_store import StorageError, in_
from sync.accumulator import PlanAccumulator

logger = logging.getLogger(__name__)


def chunked(items: List, size: int) -> Iterable[List]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class ReconcileResult:
    plans_written: int = 0
    songs_written: int = 0
    links_written: int = 0
    errors: List[str] = field(default_factory=list)


class Reconciler:
    """Writes accumulator contents through the store in bounded batches"""

    def __init__(self, store,
                 upsert_batch_size: int = config.UPSERT_BATCH_SIZE,
                 delete_batch_size: int = config.LINK_DELETE_BATCH_SIZE,
                 insert_batch_size: int = config.LINK_INSERT_BATCH_SIZE,
                 lookup_batch_size: int = config.ID_LOOKUP_BATCH_SIZE):
        self.store = store
        self.upsert_batch_size = upsert_batch_size
        self.delete_batch_size = delete_batch_size
        self.insert_batch_size = insert_batch_size
        self.lookup_batch_size = lookup_batch_size

    def upsert_batch(self, table: str, records: List[Dict], conflict_key: str) -> Tuple[int, List[str]]:
        """Upsert in chunks; a failed chunk is logged and skipped, later chunks still run"""
        written = 0
        errors = []

        for number, chunk in enumerate(chunked(records, self.upsert_batch_size), start=1):
            try:
                self.store.upsert(table, chunk, on_conflict=conflict_key)
                written += len(chunk)
            except StorageError as e:
                message = f"{table} batch {number} failed: {e}"
                logger.error(f"❌ {message}")
                errors.append(message)

        return written, errors

    def resolve_ids(self, table: str, key_column: str, keys: Iterable[str]) -> Tuple[Dict[str, str], List[str]]:
        """Local primary keys for upstream ids, looked up after the write"""
        unique_keys = list(dict.fromkeys(keys))
        resolved = {}
        errors = []

        for chunk in chunked(unique_keys, self.lookup_batch_size):
            try:
                rows = self.store.select(table, f"id, {key_column}", [in_(key_column, chunk)])
            except StorageError as e:
                message = f"{table} id lookup failed: {e}"
                logger.error(f"❌ {message}")
                errors.append(message)
                continue
            for row in rows:
                resolved[str(row[key_column])] = row['id']

        return resolved, errors

    def rebuild_links(self, plan_ids: List[str], link_rows: List[Dict]) -> Tuple[int, List[str]]:
        """
        Replace the plan_songs link set of every plan in ``plan_ids``.

        Links are inserted only for plans whose old links were deleted, so a
        failed delete never leaves duplicated links behind.
        """
        errors = []
        cleared = set()

        for chunk in chunked(list(dict.fromkeys(plan_ids)), self.delete_batch_size):
            try:
                self.store.delete('plan_songs', [in_('plan_id', chunk)])
                cleared.update(chunk)
            except StorageError as e:
                message = f"plan_songs delete failed for {len(chunk)} plans: {e}"
                logger.error(f"❌ {message}")
                errors.append(message)

        rows = [row for row in link_rows if row['plan_id'] in cleared]
        written = 0
        for chunk in chunked(rows, self.insert_batch_size):
            try:
                self.store.insert('plan_songs', chunk)
                written += len(chunk)
            except StorageError as e:
                message = f"plan_songs insert failed for {len(chunk)} links: {e}"
                logger.error(f"❌ {message}")
                errors.append(message)

        return written, errors

    def reconcile(self, accumulator: PlanAccumulator) -> ReconcileResult:
        result = ReconcileResult()
        if accumulator.is_empty():
            return result

        result.plans_written, errors = self.upsert_batch(
            'service_plans', list(accumulator.plans.values()), 'pco_plan_id')
        result.errors.extend(errors)

        result.songs_written, errors = self.upsert_batch(
            'songs', list(accumulator.songs.values()), 'pco_song_id')
        result.errors.extend(errors)

        if not accumulator.plan_links:
            return result

        plan_map, errors = self.resolve_ids('service_plans', 'pco_plan_id', accumulator.plan_links.keys())
        result.errors.extend(errors)

        song_keys = [link['pco_song_id'] for links in accumulator.plan_links.values() for link in links]
        song_map, errors = self.resolve_ids('songs', 'pco_song_id', song_keys)
        result.errors.extend(errors)

        plan_ids = []
        link_rows = []
        for pco_plan_id, links in accumulator.plan_links.items():
            plan_id = plan_map.get(pco_plan_id)
            if not plan_id:
                result.errors.append(f"Plan {pco_plan_id} was not found after upsert; links left unchanged")
                continue

            plan_ids.append(plan_id)

            # Unresolvable songs: clear the plan's links, insert none
            missing = [link['pco_song_id'] for link in links if link['pco_song_id'] not in song_map]
            if missing:
                result.errors.append(
                    f"Plan {pco_plan_id}: songs {', '.join(missing)} not found after upsert; links cleared")
                continue

            for link in links:
                link_rows.append({
                    'plan_id': plan_id,
                    'song_id': song_map[link['pco_song_id']],
                    'sequence_order': link['sequence_order'],
                    'song_key': link.get('song_key'),
                })

        if plan_ids:
            result.links_written, errors = self.rebuild_links(plan_ids, link_rows)
            result.errors.extend(errors)

        logger.info(f"✅ Reconciled {result.plans_written} plans, {result.songs_written} songs, "
                    f"{result.links_written} links ({len(result.errors)} errors)")
        return result
