"""
Store client tests - PostgREST query building and auth admin calls
"""

import pytest

from conftest import FakeResponse
from storage.supabase_store import (
    StorageError,
    SupabaseStore,
    build_filter_params,
    eq,
    gte,
    in_,
    is_null,
    lt,
)

SUPABASE = 'https://project.supabase.co'


class RecordingSession:
    """Returns queued responses and remembers every request"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, **kwargs):
        self.requests.append({'method': method, 'url': url, **kwargs})
        return self.responses.pop(0) if self.responses else FakeResponse(200, [])

    def get(self, url, **kwargs):
        return self._next('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._next('POST', url, **kwargs)

    def patch(self, url, **kwargs):
        return self._next('PATCH', url, **kwargs)

    def delete(self, url, **kwargs):
        return self._next('DELETE', url, **kwargs)


def make_store(*responses):
    session = RecordingSession(*responses)
    return SupabaseStore(SUPABASE, 'service-key', 'anon-key', session=session), session


class TestFilterParams:

    @pytest.mark.storage
    def test_operators(self):
        params = build_filter_params([
            eq('user_id', 'u1'), eq('active', True), in_('pco_song_id', ['1', '2']),
            is_null('bpm'), gte('plan_date', '2025-01-01'), lt('plan_date', '2025-02-01'),
        ])

        assert params == [
            ('user_id', 'eq.u1'),
            ('active', 'eq.true'),
            ('pco_song_id', 'in.(1,2)'),
            ('bpm', 'is.null'),
            ('plan_date', 'gte.2025-01-01'),
            ('plan_date', 'lt.2025-02-01'),
        ]

    @pytest.mark.storage
    def test_in_values_with_reserved_characters_are_quoted(self):
        assert build_filter_params([in_('name', ['Encounter (CC)', 'a,b'])]) == [
            ('name', 'in.("Encounter (CC)","a,b")')]

    @pytest.mark.storage
    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            build_filter_params([('x', 'like', '%a%')])


class TestSupabaseStore:

    @pytest.mark.storage
    def test_requires_configuration(self):
        with pytest.raises(StorageError):
            SupabaseStore('', '')

    @pytest.mark.storage
    def test_select(self):
        store, session = make_store(FakeResponse(200, [{'id': 's1'}]))

        rows = store.select('songs', 'id, pco_song_id', [in_('pco_song_id', ['7'])], order='title.asc', limit=5)

        assert rows == [{'id': 's1'}]
        sent = session.requests[0]
        assert sent['url'] == f"{SUPABASE}/rest/v1/songs"
        assert sent['params'] == [('select', 'id, pco_song_id'), ('pco_song_id', 'in.(7)'),
                                  ('order', 'title.asc'), ('limit', '5')]
        assert sent['headers']['Authorization'] == 'Bearer service-key'

    @pytest.mark.storage
    def test_upsert_merges_on_conflict_column(self):
        store, session = make_store(FakeResponse(201, [{'id': 'p1'}]))

        store.upsert('service_plans', [{'pco_plan_id': '9'}], on_conflict='pco_plan_id')

        sent = session.requests[0]
        assert sent['params'] == {'on_conflict': 'pco_plan_id'}
        assert 'resolution=merge-duplicates' in sent['headers']['Prefer']

    @pytest.mark.storage
    def test_empty_writes_skip_the_network(self):
        store, session = make_store()

        assert store.insert('plan_songs', []) == []
        assert store.upsert('songs', [], on_conflict='pco_song_id') == []
        assert session.requests == []

    @pytest.mark.storage
    @pytest.mark.parametrize('method', ['update', 'delete'])
    def test_unfiltered_mutations_are_refused(self, method):
        store, session = make_store()
        args = ('songs', {'bpm': 1}, []) if method == 'update' else ('songs', [])

        with pytest.raises(StorageError):
            getattr(store, method)(*args)
        assert session.requests == []

    @pytest.mark.storage
    def test_error_status_raises(self):
        store, _ = make_store(FakeResponse(409, {'message': 'duplicate key'}))

        with pytest.raises(StorageError) as exc_info:
            store.insert('plan_songs', [{'plan_id': 'p1'}])
        assert exc_info.value.status_code == 409

    @pytest.mark.storage
    def test_no_content_is_an_empty_result(self):
        response = FakeResponse(204)
        response.content = b''
        store, _ = make_store(response)

        assert store.delete('plan_songs', [in_('plan_id', ['p1'])]) == []

    @pytest.mark.storage
    def test_get_user(self):
        store, session = make_store(FakeResponse(200, {'id': 'u1', 'email': 'a@b.org'}), FakeResponse(401))

        assert store.get_user('jwt-1') == {'id': 'u1', 'email': 'a@b.org'}
        assert store.get_user('expired') is None
        assert session.requests[0]['headers'] == {'apikey': 'anon-key', 'Authorization': 'Bearer jwt-1'}

    @pytest.mark.storage
    def test_create_auth_user_confirms_email(self):
        store, session = make_store(FakeResponse(200, {'id': 'u2'}))

        store.create_auth_user('new@church.org', 'pw', {'full_name': 'New Person'})

        body = session.requests[0]['json']
        assert session.requests[0]['url'] == f"{SUPABASE}/auth/v1/admin/users"
        assert body['email_confirm'] is True
        assert body['user_metadata'] == {'full_name': 'New Person'}
