# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Schedule Sync - one service date's audio/video crew into a local team
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from auth.token_vault import TokenVault
from pco_ops.fetcher import PCOClient, UpstreamError
from storage.supabase_store import StorageError, eq
from sync.classification import map_audio_position, map_video_position, team_kinds
from sync.collector import plan_date_of
from sync.errors import SetupError
from sync.window import SyncWindow, INCREMENTAL

logger = logging.getLogger(__name__)

TEAM_TYPES = ('audio', 'video', 'both')
POSITION_MAPPERS = {
    'audio': map_audio_position,
    'video': map_video_position,
}


@dataclass
class ScheduleRequest:
    date: str
    team_type: str = 'both'
    team_id: Optional[str] = None

    @property
    def kinds(self):
        return ('audio', 'video') if self.team_type == 'both' else (self.team_type,)

    @classmethod
    def from_request(cls, body: Optional[Dict[str, Any]]) -> 'ScheduleRequest':
        if not isinstance(body, dict) or not body.get('date'):
            raise SetupError("Date is required (format: YYYY-MM-DD)")

        date = body['date']
        try:
            datetime.strptime(date, '%Y-%m-%d')
        except (TypeError, ValueError):
            raise SetupError("Date must use the format YYYY-MM-DD")

        team_type = body.get('team_type') or 'both'
        if team_type not in TEAM_TYPES:
            raise SetupError("team_type must be one of audio, video or both")

        return cls(date=date, team_type=team_type, team_id=body.get('team_id') or None)


def _member_name(person: Dict, team_member: Dict) -> str:
    first, last = person.get('first_name'), person.get('last_name')
    if first and last:
        return f"{first} {last}".strip()
    return (team_member.get('attributes') or {}).get('name') or 'Unknown'


class ScheduleSync:
    """Creates or enriches team_members rows for people scheduled on one date"""

    def __init__(self, store, client: PCOClient, vault: TokenVault):
        self.store = store
        self.client = client
        self.vault = vault
        self._user_ids: Dict[str, Optional[str]] = {}

    def run(self, connection: Dict, request: ScheduleRequest) -> Dict:
        token = self.vault.get_valid_access_token(connection)

        team_id = request.team_id
        if not team_id:
            entry = self.store.select_one('team_schedule', 'team_id', [eq('schedule_date', request.date)])
            team_id = (entry or {}).get('team_id')
            if team_id:
                logger.info(f"Auto-detected team {team_id} from schedule for {request.date}")

        results = {
            'team_id': team_id,
            'audio_synced': 0,
            'video_synced': 0,
            'audio_updated': 0,
            'video_updated': 0,
            'members_found': [],
            'errors': [],
        }

        target = datetime.strptime(request.date, '%Y-%m-%d').date()
        window = SyncWindow(kind=INCREMENTAL,
                            after=(target - timedelta(days=1)).isoformat(),
                            before=(target + timedelta(days=1)).isoformat())

        try:
            service_types = self.client.fetch_all_pages(token, '/services/v2/service_types', strict=True)
        except UpstreamError as e:
            results['errors'].append(f"Could not list service types: {e}")
            return results

        for service_type in service_types:
            plans = self.client.fetch_all_pages(
                token, f"/services/v2/service_types/{service_type['id']}/plans?{window.plans_query()}")
            for plan in plans:
                if plan_date_of(plan) != request.date:
                    continue
                logger.info(f"Found plan {plan['id']} on {request.date}")
                self._sync_plan(token, service_type['id'], plan, request, team_id, results)

        logger.info(f"✅ Schedule sync for {request.date}: {len(results['members_found'])} members found")
        return results

    def _sync_plan(self, token: str, service_type_id: str, plan: Dict, request: ScheduleRequest,
                   team_id: Optional[str], results: Dict):
        document = self.client.fetch_all_documents(
            token,
            f"/services/v2/service_types/{service_type_id}/plans/{plan['id']}/team_members"
            f"?include=person,team,team_position&per_page=100")

        persons, teams = {}, {}
        for resource in document['included']:
            if resource.get('type') == 'Person':
                persons[resource['id']] = resource.get('attributes') or {}
            elif resource.get('type') == 'Team':
                teams[resource['id']] = resource.get('attributes') or {}

        for team_member in document['data']:
            relationships = team_member.get('relationships') or {}
            person_id = ((relationships.get('person') or {}).get('data') or {}).get('id')
            pco_team_id = ((relationships.get('team') or {}).get('data') or {}).get('id')
            person = persons.get(person_id)
            if not person:
                continue

            position_name = (team_member.get('attributes') or {}).get('team_position_name') or ''
            full_name = _member_name(person, team_member)
            email = (person.get('primary_email_address') or '').strip().lower()
            kinds = team_kinds((teams.get(pco_team_id) or {}).get('name'))

            for kind in request.kinds:
                if kind not in kinds:
                    continue
                mapped = POSITION_MAPPERS[kind](position_name)
                if not mapped:
                    continue

                results['members_found'].append({
                    'name': full_name,
                    'position': position_name,
                    'team': kind.capitalize(),
                    'email': email or None,
                })
                if team_id:
                    try:
                        self._assign(team_id, full_name, email, mapped, kind, results)
                    except StorageError as e:
                        results['errors'].append(f"Failed to assign {full_name}: {e}")

    def _user_id_for(self, email: str) -> Optional[str]:
        if not email:
            return None
        if email not in self._user_ids:
            profile = self.store.select_one('profiles', 'id', [eq('email', email)])
            self._user_ids[email] = (profile or {}).get('id')
        return self._user_ids[email]

    def _assign(self, team_id: str, full_name: str, email: str, mapped, kind: str, results: Dict):
        """Insert the (team, position, person) assignment once; later runs only enrich it"""
        position, slot = mapped
        user_id = self._user_id_for(email)

        existing = None
        if user_id:
            existing = self.store.select_one('team_members', 'id', [
                eq('team_id', team_id), eq('user_id', user_id), eq('position', position)])
        if not existing:
            existing = self.store.select_one('team_members', 'id', [
                eq('team_id', team_id), eq('member_name', full_name), eq('position', position)])

        if not existing:
            self.store.insert('team_members', [{
                'team_id': team_id,
                'user_id': user_id,
                'member_name': full_name,
                'position': position,
                'position_slot': slot,
            }])
            results[f'{kind}_synced'] += 1
            logger.info(f"Created assignment: {full_name} as {position} ({kind})")
        elif user_id:
            self.store.update('team_members', {'user_id': user_id, 'position_slot': slot},
                              [eq('id', existing['id'])])
            results[f'{kind}_updated'] += 1
