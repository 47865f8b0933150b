# © 2025 Experience Community Church. All Rights Reserved.
# Licensed exclusively for use by Experience Community Church (Murfreesboro, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Supabase Store - PostgREST and GoTrue admin access with the service-role key
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

import config
from utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# A filter is (column, operator, value); operators map onto PostgREST's eq/in/is/gte/lt.
Filter = Tuple[str, str, Any]


class StorageError(Exception):
    """Raised when a PostgREST or auth admin request fails"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def eq(column: str, value: Any) -> Filter:
    return (column, 'eq', value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return (column, 'in', list(values))


def is_null(column: str) -> Filter:
    return (column, 'is', None)


def gte(column: str, value: Any) -> Filter:
    return (column, 'gte', value)


def lt(column: str, value: Any) -> Filter:
    return (column, 'lt', value)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _quote_in_value(value: Any) -> str:
    text = _format_value(value)
    if any(ch in text for ch in ',()"'):
        escaped = text.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'
    return text


def build_filter_params(filters: Optional[Sequence[Filter]]) -> List[Tuple[str, str]]:
    """Translate filter tuples into PostgREST query parameters"""
    params = []
    for column, operator, value in filters or []:
        if operator == 'in':
            joined = ','.join(_quote_in_value(v) for v in value)
            params.append((column, f"in.({joined})"))
        elif operator == 'is':
            params.append((column, f"is.{'null' if value is None else _format_value(value)}"))
        elif operator in ('eq', 'gte', 'lt'):
            params.append((column, f"{operator}.{_format_value(value)}"))
        else:
            raise ValueError(f"Unsupported filter operator: {operator}")
    return params


class SupabaseStore:
    """
    PostgREST client for the sync tables

    Usage:
        store = SupabaseStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
        rows = store.select('songs', 'id, pco_song_id', [in_('pco_song_id', ids)])
        store.upsert('songs', records, on_conflict='pco_song_id')
    """

    def __init__(self, url: str, service_key: str, anon_key: str = '',
                 session: Optional[requests.Session] = None,
                 timeout: int = config.STORAGE_TIMEOUT_SECONDS):
        if not url or not service_key:
            raise StorageError("Supabase URL and service role key must be configured")

        self.url = url.rstrip('/')
        self.rest_url = f"{self.url}/rest/v1"
        self.service_key = service_key
        self.anon_key = anon_key or service_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            'apikey': service_key,
            'Authorization': f'Bearer {service_key}',
            'Content-Type': 'application/json',
            'Prefer': 'return=representation',
        }

    def _check(self, response: requests.Response, action: str, table: str) -> Any:
        if response.status_code >= 400:
            detail = response.text[:300]
            logger.error(f"❌ {action} on {table} failed ({response.status_code}): {detail}")
            raise StorageError(f"{action} on {table} failed: {detail}", response.status_code)

        if response.status_code == 204 or not response.content:
            return []
        return response.json()

    @retry_with_backoff(
        max_retries=config.MAX_RETRIES,
        base_delay=config.BASE_DELAY,
        retry_on=(requests.ConnectionError, requests.Timeout)
    )
    def _get(self, table: str, params: List[Tuple[str, str]]) -> requests.Response:
        return self.session.get(f"{self.rest_url}/{table}", headers=self.headers,
                                params=params, timeout=self.timeout)

    def select(self, table: str, columns: str = '*', filters: Optional[Sequence[Filter]] = None,
               order: Optional[str] = None, limit: Optional[int] = None) -> List[Dict]:
        params = [('select', columns)] + build_filter_params(filters)
        if order:
            params.append(('order', order))
        if limit is not None:
            params.append(('limit', str(limit)))

        response = self._get(table, params)
        return self._check(response, 'select', table)

    def select_one(self, table: str, columns: str = '*',
                   filters: Optional[Sequence[Filter]] = None,
                   order: Optional[str] = None) -> Optional[Dict]:
        rows = self.select(table, columns, filters, order=order, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, rows: List[Dict]) -> List[Dict]:
        if not rows:
            return []
        response = self.session.post(f"{self.rest_url}/{table}", headers=self.headers,
                                     json=rows, timeout=self.timeout)
        return self._check(response, 'insert', table)

    def upsert(self, table: str, rows: List[Dict], on_conflict: str) -> List[Dict]:
        """Insert or merge rows on a unique column; replaying the same rows is a no-op"""
        if not rows:
            return []
        headers = dict(self.headers)
        headers['Prefer'] = 'return=representation,resolution=merge-duplicates'
        response = self.session.post(f"{self.rest_url}/{table}", headers=headers,
                                     params={'on_conflict': on_conflict},
                                     json=rows, timeout=self.timeout)
        return self._check(response, 'upsert', table)

    def update(self, table: str, values: Dict, filters: Sequence[Filter]) -> List[Dict]:
        if not filters:
            raise StorageError(f"Refusing unfiltered update on {table}")
        response = self.session.patch(f"{self.rest_url}/{table}", headers=self.headers,
                                      params=build_filter_params(filters),
                                      json=values, timeout=self.timeout)
        return self._check(response, 'update', table)

    def delete(self, table: str, filters: Sequence[Filter]) -> List[Dict]:
        if not filters:
            raise StorageError(f"Refusing unfiltered delete on {table}")
        response = self.session.delete(f"{self.rest_url}/{table}", headers=self.headers,
                                       params=build_filter_params(filters),
                                       timeout=self.timeout)
        return self._check(response, 'delete', table)

    # Auth

    def get_user(self, access_token: str) -> Optional[Dict]:
        """Resolve a caller's JWT to their auth user, or None if it is invalid"""
        response = self.session.get(
            f"{self.url}/auth/v1/user",
            headers={'apikey': self.anon_key, 'Authorization': f'Bearer {access_token}'},
            timeout=self.timeout
        )
        if response.status_code in (401, 403):
            return None
        user = self._check(response, 'get_user', 'auth.users')
        return user if isinstance(user, dict) and user.get('id') else None

    def create_auth_user(self, email: str, password: str, metadata: Optional[Dict] = None) -> Dict:
        response = self.session.post(
            f"{self.url}/auth/v1/admin/users",
            headers=self.headers,
            json={
                'email': email,
                'password': password,
                'email_confirm': True,
                'user_metadata': metadata or {},
            },
            timeout=self.timeout
        )
        return self._check(response, 'create_user', 'auth.users')


_store = None


def get_store() -> SupabaseStore:
    """Process-wide store built from config"""
    global _store
    if _store is None:
        _store = SupabaseStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY,
                               config.SUPABASE_ANON_KEY)
    return _store
