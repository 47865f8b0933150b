# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Plan Collector - turns Planning Center service types, plans and items into accumulator rows
"""
import logging
import time
from typing import Callable, Dict, List, Optional

import config
from pco_ops.fetcher import PCOClient, UpstreamError, UpstreamExhaustedError
from sync.accumulator import PlanAccumulator, song_record
from sync.classification import CampusClassifier
from sync.window import SyncWindow
from utils.retry import RetryContext

logger = logging.getLogger(__name__)


def plan_date_of(plan: Dict) -> Optional[str]:
    """YYYY-MM-DD from the plan's sort_date, or None when it has none"""
    sort_date = (plan.get('attributes') or {}).get('sort_date')
    if not sort_date:
        return None
    return sort_date.split('T')[0]


def plan_record(plan: Dict, service_type_name: str, campus_id: Optional[str],
                plan_date: str, synced_at: str) -> Dict:
    attributes = plan.get('attributes') or {}
    return {
        'pco_plan_id': str(plan['id']),
        'campus_id': campus_id,
        'service_type_name': service_type_name,
        'plan_date': plan_date,
        'plan_title': attributes.get('title') or f"{service_type_name} - {plan_date}",
        'synced_at': synced_at,
    }


def song_links_from_items(document: Dict, accumulator: PlanAccumulator) -> List[Dict]:
    """
    Ordered song links for one plan's items document.

    Only `song` items with a song relationship count; sequence is the position
    among those items. Songs sideloaded in `included` are accumulated too.
    """
    included = {
        str(resource.get('id')): resource
        for resource in document.get('included') or []
        if resource.get('type') == 'Song'
    }

    links = []
    for item in document.get('data') or []:
        attributes = item.get('attributes') or {}
        if attributes.get('item_type') != 'song':
            continue

        song_ref = ((item.get('relationships') or {}).get('song') or {}).get('data')
        if not song_ref or not song_ref.get('id'):
            continue

        pco_song_id = str(song_ref['id'])
        song = included.get(pco_song_id)
        if song:
            accumulator.add_song(song_record(song))

        links.append({
            'pco_song_id': pco_song_id,
            'sequence_order': len(links),
            'song_key': attributes.get('key_name') or None,
        })

    return links


class PlanCollector:
    """Shared Planning Center walk used by the resumable sync and the scheduled sweep"""

    def __init__(self, client: PCOClient, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.sleep = sleep

    def allowed_service_types(self, token: str, classifier: CampusClassifier) -> List[Dict]:
        """Service types passing the collection filter; raises UpstreamError if the listing fails"""
        service_types = self.client.fetch_all_pages(token, '/services/v2/service_types', strict=True)
        allowed = [
            st for st in service_types
            if classifier.is_allowed((st.get('attributes') or {}).get('name'))
        ]
        logger.info(f"Processing {len(allowed)} of {len(service_types)} service types after ministry filter")
        return allowed

    def fetch_plans(self, token: str, service_type: Dict, window: SyncWindow,
                    max_pages: int = config.DEFAULT_MAX_PAGES) -> List[Dict]:
        path = f"/services/v2/service_types/{service_type['id']}/plans?{window.plans_query()}"
        return self.client.fetch_all_pages(token, path, max_pages=max_pages)

    def fetch_items(self, token: str, service_type_id: str, plan_id: str) -> Dict:
        path = f"/services/v2/service_types/{service_type_id}/plans/{plan_id}/items?include=song&per_page=100"
        retry = RetryContext(
            max_attempts=config.ITEM_FETCH_ATTEMPTS,
            base_delay=config.ITEM_RETRY_BASE_SECONDS,
            sleep=self.sleep,
            label=f"Items for plan {plan_id}"
        )
        while retry.should_retry():
            try:
                return self.client.fetch_one(token, path)
            except UpstreamExhaustedError as e:
                retry.record_failure(e)
        raise retry.last_exception

    def collect_plan(self, token: str, service_type: Dict, plan: Dict, campus_id: Optional[str],
                     accumulator: PlanAccumulator, synced_at: str) -> Optional[str]:
        """
        Add one plan and its song links to the accumulator.

        Returns an error message when the plan's items could not be fetched; the
        plan row is still accumulated but its links are left untouched.
        """
        service_type_name = (service_type.get('attributes') or {}).get('name') or ''
        plan_date = plan_date_of(plan)
        if not plan_date:
            logger.warning(f"Skipping plan {plan.get('id')} in {service_type_name}: no sort date")
            return None

        accumulator.add_plan(plan_record(plan, service_type_name, campus_id, plan_date, synced_at))

        try:
            document = self.fetch_items(token, service_type['id'], plan['id'])
        except UpstreamError as e:
            logger.error(f"❌ Could not fetch items for plan {plan['id']}: {e}")
            return f"Plan {plan['id']}: {e}"

        accumulator.set_links(str(plan['id']), song_links_from_items(document, accumulator))
        return None
