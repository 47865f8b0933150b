"""
Shared fixtures: an in-memory stand-in for the PostgREST store and a fake
Planning Center HTTP session, so the real fetcher, vault and sync code run
without network access.
"""

import itertools
import json
import os
import sys
from datetime import datetime, timedelta

import pytest
import pytz
import requests

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from auth.token_vault import TokenVault
from pco_ops.fetcher import PCOClient
from storage.supabase_store import StorageError
from utils.timezone import to_iso

PCO_BASE = 'https://api.planningcenteronline.com'
TEST_SECRET = 'unit-test-encryption-secret'
FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=pytz.UTC)


def _matches(row, column, operator, value):
    actual = row.get(column)
    if operator == 'eq':
        return actual is not None and str(actual) == str(value)
    if operator == 'in':
        return actual is not None and str(actual) in {str(v) for v in value}
    if operator == 'is':
        return actual is None
    if operator == 'gte':
        return actual is not None and actual >= value
    if operator == 'lt':
        return actual is not None and actual < value
    raise ValueError(operator)


class InMemoryStore:
    """Implements the SupabaseStore surface over plain lists of dicts"""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}
        self.users = {}
        self._ids = itertools.count(1)

    def table(self, name):
        return self.tables.setdefault(name, [])

    def seed(self, name, rows):
        for row in rows:
            row = dict(row)
            row.setdefault('id', self._next_id(name))
            self.table(name).append(row)
        return self.table(name)

    def fail(self, operation, table, times=1):
        """Make the next `times` calls of operation on table raise StorageError"""
        self.failures[(operation, table)] = times

    def _next_id(self, table):
        return f"{table}-{next(self._ids)}"

    def _maybe_fail(self, operation, table):
        remaining = self.failures.get((operation, table), 0)
        if remaining:
            self.failures[(operation, table)] = remaining - 1
            raise StorageError(f"simulated {operation} failure on {table}", 500)

    def _filtered(self, table, filters):
        return [r for r in self.table(table)
                if all(_matches(r, c, op, v) for c, op, v in filters or [])]

    def select(self, table, columns='*', filters=None, order=None, limit=None):
        self.calls.append(('select', table, filters))
        self._maybe_fail('select', table)
        rows = self._filtered(table, filters)
        if order:
            column, _, direction = order.partition('.')
            rows = sorted(rows, key=lambda r: r.get(column) or '', reverse=direction == 'desc')
        if limit is not None:
            rows = rows[:limit]
        if columns.strip() == '*':
            return [dict(r) for r in rows]
        wanted = [c.strip() for c in columns.split(',')]
        return [{c: r.get(c) for c in wanted} for r in rows]

    def select_one(self, table, columns='*', filters=None, order=None):
        rows = self.select(table, columns, filters, order=order, limit=1)
        return rows[0] if rows else None

    def insert(self, table, rows):
        self.calls.append(('insert', table, len(rows)))
        self._maybe_fail('insert', table)
        created = []
        for row in rows:
            row = dict(row)
            row.setdefault('id', self._next_id(table))
            self.table(table).append(row)
            created.append(dict(row))
        return created

    def upsert(self, table, rows, on_conflict):
        self.calls.append(('upsert', table, len(rows)))
        self._maybe_fail('upsert', table)
        written = []
        for row in rows:
            existing = next((r for r in self.table(table)
                             if str(r.get(on_conflict)) == str(row[on_conflict])), None)
            if existing:
                existing.update(row)
                written.append(dict(existing))
            else:
                new = dict(row)
                new.setdefault('id', self._next_id(table))
                self.table(table).append(new)
                written.append(dict(new))
        return written

    def update(self, table, values, filters):
        self.calls.append(('update', table, filters))
        self._maybe_fail('update', table)
        rows = self._filtered(table, filters)
        for row in rows:
            row.update(values)
        return [dict(r) for r in rows]

    def delete(self, table, filters):
        self.calls.append(('delete', table, filters))
        self._maybe_fail('delete', table)
        doomed = self._filtered(table, filters)
        self.tables[table] = [r for r in self.table(table) if r not in doomed]
        return doomed

    def get_user(self, access_token):
        return self.users.get(access_token)

    def create_auth_user(self, email, password, metadata=None):
        self._maybe_fail('create_user', 'auth.users')
        user_id = self._next_id('users')
        # Mirrors the profile row the database trigger creates for a new auth user
        self.table('profiles').append({'id': user_id, 'email': email, 'positions': None})
        self.calls.append(('create_user', email, password))
        return {'id': user_id, 'email': email}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}
        self.text = json.dumps(self._payload)
        self.content = self.text.encode()

    def json(self):
        return self._payload


class FakePCOSession:
    """
    Routes GETs by path (base URL stripped) to canned responses.

    A route may be a FakeResponse, a dict payload, a list consumed in order
    (the last entry repeats), an Exception instance to raise, or a callable.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []
        self.posts = []
        self.post_responses = []

    def add(self, path, response):
        self.routes[path] = response

    def _resolve(self, path):
        if path not in self.routes:
            return FakeResponse(404, {'errors': [{'detail': f'no route for {path}'}]})
        route = self.routes[path]
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if callable(route) and not isinstance(route, FakeResponse):
            route = route()
        if isinstance(route, Exception):
            raise route
        if isinstance(route, dict):
            return FakeResponse(200, route)
        return route

    def get(self, url, headers=None, timeout=None, params=None):
        path = url.replace(PCO_BASE, '')
        self.requests.append(path)
        return self._resolve(path)

    def post(self, url, json=None, data=None, timeout=None, headers=None):
        self.posts.append({'url': url, 'json': json})
        if not self.post_responses:
            raise AssertionError(f"unexpected POST to {url}")
        response = self.post_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, path):
        return self.requests.count(path)


class FakeSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


class FlagBudget:
    """Budget that runs out once `trip()` has been called"""

    def __init__(self):
        self.tripped = False
        self.limit_seconds = 55

    def trip(self):
        self.tripped = True

    def exhausted(self, reserve=0.0):
        return self.tripped

    def remaining(self):
        return 0 if self.tripped else self.limit_seconds


def page(data, next_path=None, included=None):
    document = {'data': data, 'links': {}}
    if next_path:
        document['links']['next'] = f"{PCO_BASE}{next_path}"
    if included is not None:
        document['included'] = included
    return document


def service_type(st_id, name):
    return {'type': 'ServiceType', 'id': st_id, 'attributes': {'name': name}}


def plan(plan_id, sort_date, title=None):
    return {'type': 'Plan', 'id': plan_id, 'attributes': {'sort_date': sort_date, 'title': title}}


def song_item(item_id, song_id, key=None):
    return {
        'type': 'Item', 'id': item_id,
        'attributes': {'item_type': 'song', 'key_name': key},
        'relationships': {'song': {'data': {'type': 'Song', 'id': song_id}}},
    }


def header_item(item_id):
    return {'type': 'Item', 'id': item_id, 'attributes': {'item_type': 'header'}, 'relationships': {}}


def song(song_id, title, author=None, ccli=None):
    return {'type': 'Song', 'id': song_id,
            'attributes': {'title': title, 'author': author, 'ccli_number': ccli}}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def pco_session():
    return FakePCOSession()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def client(pco_session, fake_sleep):
    return PCOClient(session=pco_session, base_url=PCO_BASE, sleep=fake_sleep)


@pytest.fixture
def token_session():
    return FakePCOSession()


@pytest.fixture
def vault(store, token_session):
    return TokenVault(TEST_SECRET, store, session=token_session,
                      client_id='client-id', client_secret='client-secret',
                      token_url=f"{PCO_BASE}/oauth/token", now=lambda: FIXED_NOW)


@pytest.fixture
def connection(store, vault):
    """A stored connection whose token is valid for another hour"""
    rows = store.seed('pco_connections', [{
        'user_id': 'user-1',
        'access_token_encrypted': vault.encrypt('access-1'),
        'refresh_token_encrypted': vault.encrypt('refresh-1'),
        'token_expires_at': to_iso(FIXED_NOW + timedelta(hours=1)),
        'pco_organization_name': 'Test Church',
        'campus_id': 'campus-central',
        'last_sync_at': None,
        'sync_team_members': True,
        'sync_positions': True,
        'sync_birthdays': False,
        'sync_phone_numbers': False,
        'sync_active_only': False,
    }])
    return rows[-1]


@pytest.fixture
def campuses(store):
    return store.seed('campuses', [
        {'id': 'campus-central', 'name': 'Murfreesboro Central'},
        {'id': 'campus-north', 'name': 'Murfreesboro North'},
        {'id': 'campus-cannon', 'name': 'Cannon County'},
        {'id': 'campus-tullahoma', 'name': 'Tullahoma'},
    ])
