"""
Reconciliation tests - idempotent upserts and link set replacement
"""

import pytest

from sync.accumulator import PlanAccumulator
from sync.reconcile import Reconciler


def _accumulate(plans):
    """plans: {pco_plan_id: [(pco_song_id, key), ...]}"""
    accumulator = PlanAccumulator()
    for pco_plan_id, songs in plans.items():
        accumulator.add_plan({
            'pco_plan_id': pco_plan_id, 'campus_id': 'c1', 'service_type_name': 'Sunday',
            'plan_date': '2025-03-09', 'plan_title': f'Plan {pco_plan_id}', 'synced_at': 'now',
        })
        links = []
        for sequence, (pco_song_id, key) in enumerate(songs):
            accumulator.add_song({'pco_song_id': pco_song_id, 'title': f'Song {pco_song_id}',
                                  'author': None, 'ccli_number': None})
            links.append({'pco_song_id': pco_song_id, 'sequence_order': sequence, 'song_key': key})
        accumulator.set_links(pco_plan_id, links)
    return accumulator


def _links_for(store, pco_plan_id):
    plan_id = next(p['id'] for p in store.tables['service_plans'] if p['pco_plan_id'] == pco_plan_id)
    songs = {s['id']: s['pco_song_id'] for s in store.tables['songs']}
    rows = sorted((r for r in store.tables.get('plan_songs', []) if r['plan_id'] == plan_id),
                  key=lambda r: r['sequence_order'])
    return [(songs[r['song_id']], r['sequence_order'], r['song_key']) for r in rows]


class TestReconcile:
    """Reconciler.reconcile"""

    @pytest.mark.reconcile
    def test_replaying_the_same_data_is_idempotent(self, store):
        reconciler = Reconciler(store)
        reconciler.reconcile(_accumulate({'p1': [('s1', 'G'), ('s2', 'D')]}))
        snapshot = {name: [dict(r) for r in rows] for name, rows in store.tables.items()}

        reconciler.reconcile(_accumulate({'p1': [('s1', 'G'), ('s2', 'D')]}))

        assert len(store.tables['service_plans']) == len(snapshot['service_plans']) == 1
        assert len(store.tables['songs']) == 2
        assert _links_for(store, 'p1') == [('s1', 0, 'G'), ('s2', 1, 'D')]

    @pytest.mark.reconcile
    def test_reordered_songs_replace_the_link_set(self, store):
        reconciler = Reconciler(store)
        reconciler.reconcile(_accumulate({'p1': [('a', None), ('b', None), ('c', None)]}))

        reconciler.reconcile(_accumulate({'p1': [('c', 'E'), ('a', 'A')]}))

        assert _links_for(store, 'p1') == [('c', 0, 'E'), ('a', 1, 'A')]

    @pytest.mark.reconcile
    def test_plan_with_no_songs_clears_old_links(self, store):
        reconciler = Reconciler(store)
        reconciler.reconcile(_accumulate({'p1': [('a', None)]}))

        reconciler.reconcile(_accumulate({'p1': []}))

        assert _links_for(store, 'p1') == []

    @pytest.mark.reconcile
    def test_plan_without_fetched_items_keeps_links(self, store):
        reconciler = Reconciler(store)
        reconciler.reconcile(_accumulate({'p1': [('a', None)]}))

        accumulator = _accumulate({'p1': []})
        accumulator.plan_links.clear()
        reconciler.reconcile(accumulator)

        assert _links_for(store, 'p1') == [('a', 0, None)]

    @pytest.mark.reconcile
    def test_failed_chunk_is_reported_and_later_chunks_still_run(self, store):
        reconciler = Reconciler(store, upsert_batch_size=2)
        store.fail('upsert', 'service_plans', times=1)

        result = reconciler.reconcile(_accumulate({'p1': [], 'p2': [], 'p3': []}))

        assert result.plans_written == 1
        assert [p['pco_plan_id'] for p in store.tables['service_plans']] == ['p3']
        assert any('service_plans batch 1' in e for e in result.errors)

    @pytest.mark.reconcile
    def test_unresolved_song_clears_plan_links(self, store):
        """A plan that changed upstream must not keep its previous song order"""
        reconciler = Reconciler(store)
        reconciler.reconcile(_accumulate({'p1': [('a', None)], 'p2': [('b', None)]}))

        accumulator = _accumulate({'p1': [('a', None)], 'p2': [('b', 'G')]})
        accumulator.plan_links['p1'].append({'pco_song_id': 'ghost', 'sequence_order': 1, 'song_key': None})
        result = reconciler.reconcile(accumulator)

        assert _links_for(store, 'p1') == []
        assert _links_for(store, 'p2') == [('b', 0, 'G')]
        assert any('ghost' in e and 'links cleared' in e for e in result.errors)

    @pytest.mark.reconcile
    def test_failed_delete_skips_inserting_links(self, store):
        reconciler = Reconciler(store)
        reconciler.reconcile(_accumulate({'p1': [('a', None)]}))
        store.fail('delete', 'plan_songs')

        result = reconciler.reconcile(_accumulate({'p1': [('a', None), ('b', None)]}))

        assert _links_for(store, 'p1') == [('a', 0, None)]
        assert result.links_written == 0
        assert result.errors

    @pytest.mark.reconcile
    def test_link_batches_are_bounded(self, store):
        reconciler = Reconciler(store, insert_batch_size=2)

        reconciler.reconcile(_accumulate({'p1': [(f's{i}', None) for i in range(5)]}))

        inserts = [c for c in store.calls if c[0] == 'insert' and c[1] == 'plan_songs']
        assert [c[2] for c in inserts] == [2, 2, 1]
