# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Team Roster Sync - Planning Center team assignments into app profiles
"""
import logging
import secrets
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import config
from auth.token_vault import TokenVault
from pco_ops.fetcher import PCOClient, UpstreamError
from storage.supabase_store import StorageError, eq
from sync.classification import map_role_to_position
from sync.reconcile import chunked
from utils.timezone import utc_now, to_iso

logger = logging.getLogger(__name__)


def temporary_password() -> str:
    return secrets.token_urlsafe(12)


def _person_name(attributes: Dict) -> str:
    return f"{attributes.get('first_name') or ''} {attributes.get('last_name') or ''}".strip()


class TeamSync:
    """Creates or enriches profiles from Planning Center team position assignments"""

    def __init__(self, store, client: PCOClient, vault: TokenVault,
                 now: Callable[[], datetime] = utc_now,
                 password_factory: Callable[[], str] = temporary_password):
        self.store = store
        self.client = client
        self.vault = vault
        self.now = now
        self.password_factory = password_factory

    def run(self, connection: Dict) -> Dict:
        token = self.vault.get_valid_access_token(connection)
        results = {'synced': 0, 'updated': 0, 'skipped': 0, 'errors': []}

        active_people = None
        if connection.get('sync_active_only'):
            active_people = self.discover_active_people(token)
            logger.info(f"Found {len(active_people)} people scheduled in the last "
                        f"{config.ACTIVE_MEMBER_LOOKBACK_DAYS} days")

        try:
            members = self.collect_members(token, active_people, results)
        except UpstreamError as e:
            results['errors'].append(f"Could not list teams: {e}")
            return results

        profiles = self.store.select('profiles', 'id, email, positions, birthday, phone')
        profiles_by_email = {p['email'].lower(): p for p in profiles if p.get('email')}
        logger.info(f"Collected {len(members)} unique members; cached {len(profiles_by_email)} profiles")

        for member in members.values():
            existing = profiles_by_email.get(member['email'])
            try:
                if existing:
                    self._enrich_profile(token, connection, existing, member, results)
                elif connection.get('sync_team_members'):
                    self._create_member(token, connection, member, results)
                else:
                    results['skipped'] += 1
            except StorageError as e:
                logger.error(f"❌ Failed to sync {member['email']}: {e}")
                results['errors'].append(f"{member['email']}: {e}")

        self.store.update('pco_connections', {'last_sync_at': to_iso(self.now())},
                          [eq('id', connection['id'])])
        logger.info(f"✅ Team sync complete: {results['synced']} created, {results['updated']} updated, "
                    f"{results['skipped']} skipped")
        return results

    def collect_members(self, token: str, active_people: Optional[Set[str]], results: Dict) -> Dict[str, Dict]:
        """Unique members keyed by lowercased email, with positions merged across teams"""
        members: Dict[str, Dict] = {}
        teams = self.client.fetch_all_pages(token, '/services/v2/teams', strict=True)
        logger.info(f"Found {len(teams)} teams")

        for team in teams:
            team_name = (team.get('attributes') or {}).get('name') or ''
            position = map_role_to_position(team_name)
            document = self.client.fetch_all_documents(
                token, f"/services/v2/teams/{team['id']}/person_team_position_assignments?include=person&per_page=100")
            people = {p['id']: p for p in document['included'] if p.get('type') == 'Person'}

            for assignment in document['data']:
                person_ref = ((assignment.get('relationships') or {}).get('person') or {}).get('data') or {}
                person_id = person_ref.get('id')
                if not person_id:
                    continue

                if active_people is not None and person_id not in active_people:
                    results['skipped'] += 1
                    continue

                attributes = (people.get(person_id) or {}).get('attributes')
                if not attributes:
                    results['skipped'] += 1
                    continue

                email = (attributes.get('primary_email_address') or '').strip().lower()
                if not email:
                    results['skipped'] += 1
                    continue

                member = members.get(email)
                if member is None:
                    member = members[email] = {
                        'email': email,
                        'full_name': _person_name(attributes),
                        'person_id': person_id,
                        'birthday': attributes.get('birthdate'),
                        'positions': [],
                    }
                if position and position not in member['positions']:
                    member['positions'].append(position)

        return members

    def _phone_for(self, token: str, person_id: str) -> Optional[str]:
        try:
            document = self.client.fetch_one(token, f"/people/v2/people/{person_id}/phone_numbers")
        except UpstreamError as e:
            logger.warning(f"⚠️ Phone numbers unavailable for person {person_id}: {e}")
            return None
        numbers = document.get('data') or []
        primary = next((n for n in numbers if (n.get('attributes') or {}).get('primary')), None)
        chosen = primary or (numbers[0] if numbers else None)
        return ((chosen or {}).get('attributes') or {}).get('number')

    def _optional_fields(self, token: str, connection: Dict, member: Dict, existing: Optional[Dict]) -> Dict:
        values = {}
        existing = existing or {}
        if connection.get('sync_birthdays') and member.get('birthday') and not existing.get('birthday'):
            values['birthday'] = member['birthday']
        if connection.get('sync_phone_numbers') and not existing.get('phone'):
            phone = self._phone_for(token, member['person_id'])
            if phone:
                values['phone'] = phone
        return values

    def _enrich_profile(self, token: str, connection: Dict, existing: Dict, member: Dict, results: Dict):
        updates = {}
        if connection.get('sync_positions'):
            current = list(existing.get('positions') or [])
            added = [p for p in member['positions'] if p not in current]
            if added:
                updates['positions'] = current + added
        updates.update(self._optional_fields(token, connection, member, existing))

        if not updates:
            results['skipped'] += 1
            return

        self.store.update('profiles', updates, [eq('id', existing['id'])])
        results['updated'] += 1

    def _create_member(self, token: str, connection: Dict, member: Dict, results: Dict):
        user = self.store.create_auth_user(member['email'], self.password_factory(),
                                           {'full_name': member['full_name']})
        user_id = user.get('id')
        if not user_id:
            results['errors'].append(f"{member['email']}: user creation returned no id")
            return

        profile = {'full_name': member['full_name'], 'must_change_password': True}
        if connection.get('sync_positions') and member['positions']:
            profile['positions'] = member['positions']
        profile.update(self._optional_fields(token, connection, member, None))
        self.store.update('profiles', profile, [eq('id', user_id)])

        if connection.get('campus_id'):
            self.store.insert('user_campuses', [{'user_id': user_id, 'campus_id': connection['campus_id']}])

        results['synced'] += 1
        logger.info(f"Created user for {member['email']}")

    def discover_active_people(self, token: str) -> Set[str]:
        """
        Person ids scheduled on any plan in the lookback window.

        Service types are fetched three at a time and each one's plans five at a
        time; this is the only concurrent fetching inside a run.
        """
        after = (self.now() - timedelta(days=config.ACTIVE_MEMBER_LOOKBACK_DAYS)).date().isoformat()
        service_types = self.client.fetch_all_pages(token, '/services/v2/service_types')
        people: Set[str] = set()

        def plans_for(service_type: Dict) -> List[Dict]:
            return self.client.fetch_all_pages(
                token, f"/services/v2/service_types/{service_type['id']}/plans?filter=after&after={after}&per_page=100")

        def people_for(service_type_id: str, plan: Dict) -> Set[str]:
            members = self.client.fetch_all_pages(
                token, f"/services/v2/service_types/{service_type_id}/plans/{plan['id']}/team_members?per_page=100")
            ids = set()
            for member in members:
                ref = ((member.get('relationships') or {}).get('person') or {}).get('data') or {}
                if ref.get('id'):
                    ids.add(ref['id'])
            return ids

        for batch in chunked(service_types, config.DISCOVERY_SERVICE_TYPE_BATCH):
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                plan_lists = list(pool.map(plans_for, batch))

            for service_type, plans in zip(batch, plan_lists):
                for plan_batch in chunked(plans, config.DISCOVERY_PLAN_BATCH):
                    with ThreadPoolExecutor(max_workers=len(plan_batch)) as pool:
                        for ids in pool.map(lambda plan: people_for(service_type['id'], plan), plan_batch):
                            people.update(ids)

        return people
