"""Tests for app.services.db — run persistence, claiming, finalization and queries."""
import pytest

from app.pipeline.state import InvalidTransition
from app.services import db


def _row(run_id, tier='borderline', total=33, **kw):
    values = dict(
        run_id=run_id, first_name='Row', last_name='Test', profile_url='', email='',
        company='Initech', position='Manager', connected_on='',
        title_score=20, company_score=5, recency_score=8,
        deterministic_score=total, ai_score=None, total_score=total,
        tier=tier, is_protected=tier == 'protected', protected_reason=None,
        enrichment_status='pending' if tier == 'borderline' else 'skipped',
    )
    values.update(kw)
    return values


# ── Runs ─────────────────────────────────────────────────────────────────────

class TestRunCrud:

    def test_create_starts_pending(self):
        run = db.create_ranking_run('alice', '', {'target_titles': ['CEO']}, {'film': [], 'music': []}, 12, 10.0)
        stored = db.get_ranking_run(run.id)
        assert stored.status == 'pending'
        assert stored.total_connections == 12
        assert stored.max_budget == 10.0
        assert stored.name.startswith('Ranking ')

    def test_get_missing_is_none(self):
        assert db.get_ranking_run('nope') is None

    def test_list_is_scoped_to_owner(self, create_run):
        create_run(owner_id='alice', name='a1')
        create_run(owner_id='alice', name='a2')
        create_run(owner_id='bob', name='b1')
        names = {r.name for r in db.list_ranking_runs('alice')}
        assert names == {'a1', 'a2'}

    def test_list_respects_limit(self, create_run):
        for i in range(5):
            create_run(owner_id='alice', name=f'run{i}')
        assert len(db.list_ranking_runs('alice', limit=3)) == 3

    def test_delete_removes_rows(self, create_run, add_rows, fetch_rows):
        run = create_run()
        add_rows(run.id, [{}, {}])
        assert db.delete_ranking_run(run.id) is True
        assert db.get_ranking_run(run.id) is None
        assert fetch_rows(run.id) == []

    def test_delete_missing(self):
        assert db.delete_ranking_run('nope') is False

    def test_update_fields_refuses_status(self, create_run):
        run = create_run()
        with pytest.raises(ValueError, match='transition_run'):
            db.update_run_fields(run.id, status='completed')

    def test_update_fields(self, create_run, fetch_run):
        run = create_run()
        db.update_run_fields(run.id, summary='done', max_budget=3.0)
        assert fetch_run(run.id).summary == 'done'
        assert fetch_run(run.id).max_budget == 3.0

    def test_update_missing_run(self):
        with pytest.raises(db.RunNotFound):
            db.update_run_fields('nope', summary='x')


class TestTransitions:

    def test_valid_transition_persists(self, create_run, fetch_run):
        run = create_run(total_connections=5)
        db.transition_run(run.id, 'phase1_running')
        assert fetch_run(run.id).status == 'phase1_running'

    def test_invalid_transition_rolls_back_fields(self, create_run, fetch_run):
        run = create_run(status='completed')
        with pytest.raises(InvalidTransition):
            db.transition_run(run.id, 'phase2_running', error='should not stick')
        stored = fetch_run(run.id)
        assert stored.status == 'completed'
        assert stored.error is None

    def test_mark_failed_records_error(self, create_run, fetch_run):
        run = create_run(status='phase1_running', total_connections=5)
        db.mark_run_failed(run.id, 'boom')
        stored = fetch_run(run.id)
        assert stored.status == 'failed'
        assert stored.error == 'boom'

    def test_mark_failed_leaves_terminal_runs(self, create_run, fetch_run):
        run = create_run(status='completed')
        db.mark_run_failed(run.id, 'late error')
        assert fetch_run(run.id).status == 'completed'


# ── Phase 1 ──────────────────────────────────────────────────────────────────

class TestPhase1Persistence:

    def test_chunk_writes_rows_and_counters(self, create_run, fetch_run, fetch_rows):
        run = create_run(status='phase1_running', total_connections=3)
        rows = [_row(run.id), _row(run.id, tier='strong_keep', total=55), _row(run.id, tier='definite_remove', total=0)]
        counts = {'borderline': 1, 'strong_keep': 1, 'definite_remove': 1}
        db.persist_phase1_chunk(run.id, rows, processed=3, tier_counts=counts)

        assert len(fetch_rows(run.id)) == 3
        stored = fetch_run(run.id)
        assert stored.phase1_processed == 3
        assert stored.tier_borderline == 1
        assert stored.tier_strong_keep == 1

    def test_empty_chunk_is_noop(self, create_run, fetch_run):
        run = create_run(status='phase1_running', total_connections=3)
        db.persist_phase1_chunk(run.id, [], processed=0, tier_counts={})
        assert fetch_run(run.id).phase1_processed == 0

    def test_complete_phase1_recounts_from_rows(self, create_run, add_rows, fetch_run):
        run = create_run(status='phase1_running', total_connections=4)
        add_rows(run.id, [{}, {}, {'tier': 'protected', 'is_protected': True}, {'tier': 'likely_remove'}])
        db.complete_phase1(run.id)

        stored = fetch_run(run.id)
        assert stored.status == 'phase1_complete'
        assert stored.phase2_total == 2
        assert stored.tier_counts['protected'] == 1
        assert sum(stored.tier_counts.values()) == stored.total_connections
        assert stored.phase1_completed_at is not None

    def test_complete_phase1_rejects_mismatched_counts(self, create_run, add_rows, fetch_run):
        run = create_run(status='phase1_running', total_connections=5)
        add_rows(run.id, [{}, {}])
        with pytest.raises(db.ConsistencyError):
            db.complete_phase1(run.id)
        assert fetch_run(run.id).status == 'phase1_running'


# ── Phase 2 claiming ─────────────────────────────────────────────────────────

class TestClaiming:

    def test_claim_marks_processing(self, create_run, add_rows, fetch_rows):
        run = create_run(status='phase2_running')
        ids = add_rows(run.id, [{}, {}, {}])
        claimed = db.claim_pending(run.id, 2, 'tok-a')
        assert [r.id for r in claimed] == ids[:2]
        statuses = [(r.enrichment_status, r.claimed_by) for r in fetch_rows(run.id)]
        assert statuses == [('processing', 'tok-a'), ('processing', 'tok-a'), ('pending', None)]

    def test_second_claim_gets_remaining(self, create_run, add_rows):
        run = create_run(status='phase2_running')
        ids = add_rows(run.id, [{}, {}, {}])
        db.claim_pending(run.id, 2, 'tok-a')
        assert [r.id for r in db.claim_pending(run.id, 2, 'tok-b')] == ids[2:]
        assert db.claim_pending(run.id, 2, 'tok-c') == []

    def test_skipped_rows_never_claimed(self, create_run, add_rows):
        run = create_run(status='phase2_running')
        add_rows(run.id, [{'tier': 'strong_keep', 'enrichment_status': 'skipped'}])
        assert db.claim_pending(run.id, 10, 'tok') == []

    def test_release_only_own_claims(self, create_run, add_rows, fetch_rows):
        run = create_run(status='phase2_running')
        add_rows(run.id, [{}, {}])
        db.claim_pending(run.id, 1, 'tok-a')
        db.claim_pending(run.id, 1, 'tok-b')
        assert db.release_claims(run.id, 'tok-a') == 1
        assert [r.enrichment_status for r in fetch_rows(run.id)] == ['pending', 'processing']

    def test_requeue_orphans(self, create_run, add_rows, fetch_rows):
        run = create_run(status='phase2_running')
        add_rows(run.id, [{}, {}, {'enrichment_status': 'done'}])
        db.claim_pending(run.id, 2, 'dead-worker')
        assert db.requeue_orphans(run.id) == 2
        assert [r.enrichment_status for r in fetch_rows(run.id)] == ['pending', 'pending', 'done']
        assert all(r.claimed_by is None for r in fetch_rows(run.id))

    def test_record_enrichment_requires_claim(self, create_run, add_rows, fetch_rows, fetch_run):
        run = create_run(status='phase2_running')
        (row_id,) = add_rows(run.id, [{}])
        db.claim_pending(run.id, 1, 'tok-a')

        written = db.record_enrichment(run.id, row_id, 'tok-b', {'enrichment_status': 'done'}, {'phase2_processed': 1})
        assert written is False
        assert fetch_rows(run.id)[0].enrichment_status == 'processing'
        assert fetch_run(run.id).phase2_processed == 0

        written = db.record_enrichment(
            run.id, row_id, 'tok-a',
            {'enrichment_status': 'done', 'ai_score': 12, 'total_score': 45},
            {'phase2_processed': 1, 'external_calls': 1, 'estimated_cost': 0.0012},
        )
        assert written is True
        row = fetch_rows(run.id)[0]
        assert (row.enrichment_status, row.ai_score, row.claimed_by) == ('done', 12, None)
        stored = fetch_run(run.id)
        assert stored.external_calls == 1
        assert stored.estimated_cost == 0.0012

    def test_count_by_enrichment_status(self, create_run, add_rows):
        run = create_run(status='phase2_running')
        add_rows(run.id, [{}, {}, {'enrichment_status': 'done'}, {'enrichment_status': 'skipped'}])
        assert db.count_by_enrichment_status(run.id) == {'pending': 2, 'done': 1, 'skipped': 1}


# ── Finalization ─────────────────────────────────────────────────────────────

class TestFinalize:

    def test_dense_ranks_with_tie_breaks(self, create_run, add_rows, fetch_rows):
        run = create_run(status='phase1_complete', total_connections=4)
        ids = add_rows(run.id, [
            {'total_score': 50, 'deterministic_score': 30},
            {'total_score': 50, 'deterministic_score': 40},
            {'total_score': 60, 'deterministic_score': 20},
            {'total_score': 50, 'deterministic_score': 40},
        ])
        db.finalize_ranking(run.id)

        ranks = {r.id: r.rank_position for r in fetch_rows(run.id)}
        assert ranks == {ids[2]: 1, ids[1]: 2, ids[3]: 3, ids[0]: 4}

    def test_finalize_sets_completed_and_counts(self, create_run, add_rows, fetch_run):
        run = create_run(status='phase2_complete', total_connections=3)
        add_rows(run.id, [{}, {'tier': 'strong_keep'}, {'tier': 'strong_keep'}])
        db.finalize_ranking(run.id)
        stored = fetch_run(run.id)
        assert stored.status == 'completed'
        assert stored.completed_at is not None
        assert stored.tier_counts['strong_keep'] == 2

    def test_double_finalize_rejected_without_reranking(self, create_run, add_rows, fetch_rows):
        run = create_run(status='phase1_complete', total_connections=2)
        add_rows(run.id, [{'total_score': 10}, {'total_score': 20}])
        db.finalize_ranking(run.id)
        before = [r.rank_position for r in fetch_rows(run.id)]

        with pytest.raises(InvalidTransition, match='already finalized'):
            db.finalize_ranking(run.id)
        assert [r.rank_position for r in fetch_rows(run.id)] == before

    def test_finalize_from_running_phase_rejected(self, create_run, fetch_run):
        run = create_run(status='phase2_running', total_connections=0)
        with pytest.raises(InvalidTransition):
            db.finalize_ranking(run.id)
        assert fetch_run(run.id).status == 'phase2_running'

    def test_count_mismatch_fails_run_and_rolls_back_ranks(self, create_run, add_rows, fetch_rows, fetch_run):
        run = create_run(status='phase1_complete', total_connections=3)
        add_rows(run.id, [{}, {}])
        with pytest.raises(db.ConsistencyError):
            db.finalize_ranking(run.id)
        assert all(r.rank_position is None for r in fetch_rows(run.id))
        stored = fetch_run(run.id)
        assert stored.status == 'failed'
        assert 'Finalization failed' in stored.error

    def test_missing_run(self):
        with pytest.raises(db.RunNotFound):
            db.finalize_ranking('nope')


# ── Results query ────────────────────────────────────────────────────────────

class TestFetchResults:

    @pytest.fixture
    def populated(self, create_run, add_rows):
        run = create_run(status='phase1_complete')
        add_rows(run.id, [
            {'first_name': 'Alice', 'company': 'Acme SaaS', 'tier': 'strong_keep', 'total_score': 55},
            {'first_name': 'Bob', 'company': 'Initech', 'tier': 'borderline', 'total_score': 35},
            {'first_name': 'Carol', 'company': 'Globex', 'tier': 'likely_remove', 'total_score': 15},
            {'first_name': 'Dan', 'company': 'Acme Logistics', 'tier': 'borderline', 'total_score': 31},
        ])
        return run

    def test_tier_filter(self, populated):
        rows, total = db.fetch_results(populated.id, tier='borderline')
        assert total == 2
        assert {r.first_name for r in rows} == {'Bob', 'Dan'}

    def test_search_is_case_insensitive_across_fields(self, populated):
        rows, total = db.fetch_results(populated.id, search='acme')
        assert total == 2
        rows, total = db.fetch_results(populated.id, search='CAROL')
        assert [r.first_name for r in rows] == ['Carol']

    def test_sort_by_total_desc(self, populated):
        rows, _ = db.fetch_results(populated.id, sort_by='total_score', ascending=False)
        assert [r.first_name for r in rows] == ['Alice', 'Bob', 'Dan', 'Carol']

    def test_pagination(self, populated):
        rows, total = db.fetch_results(populated.id, sort_by='first_name', limit=2, offset=2)
        assert total == 4
        assert [r.first_name for r in rows] == ['Carol', 'Dan']

    def test_unknown_sort_rejected(self, populated):
        with pytest.raises(ValueError, match='sort field'):
            db.fetch_results(populated.id, sort_by='email')

    def test_unknown_tier_rejected(self, populated):
        with pytest.raises(ValueError, match='tier'):
            db.fetch_results(populated.id, tier='maybe')

    def test_tier_samples(self, create_run, add_rows):
        run = create_run(status='phase1_complete')
        add_rows(run.id, [
            {'tier': 'borderline', 'deterministic_score': 31},
            {'tier': 'borderline', 'deterministic_score': 45},
            {'tier': 'borderline', 'deterministic_score': 38},
            {'tier': 'definite_remove', 'deterministic_score': 2},
        ])
        samples = db.fetch_tier_samples(run.id, per_tier=2)
        assert [r.deterministic_score for r in samples['borderline']] == [45, 38]
        assert len(samples['definite_remove']) == 1
        assert samples['protected'] == []


class TestOverrides:

    def test_set_and_clear(self, create_run, add_rows, fetch_rows):
        run = create_run()
        (row_id,) = add_rows(run.id, [{'tier': 'likely_remove'}])
        row = db.set_user_override(run.id, row_id, 'keep')
        assert row.user_override == 'keep'
        assert row.tier == 'likely_remove'
        db.set_user_override(run.id, row_id, None)
        assert fetch_rows(run.id)[0].user_override is None

    def test_invalid_override(self, create_run, add_rows):
        run = create_run()
        (row_id,) = add_rows(run.id, [{}])
        with pytest.raises(ValueError, match='override'):
            db.set_user_override(run.id, row_id, 'maybe')

    def test_row_of_another_run(self, create_run, add_rows):
        run = create_run()
        other = create_run()
        (row_id,) = add_rows(other.id, [{}])
        assert db.set_user_override(run.id, row_id, 'keep') is None


class TestExportViews:

    @pytest.fixture
    def run_with_overrides(self, create_run, add_rows):
        run = create_run(status='completed')
        ids = add_rows(run.id, [
            {'first_name': 'Lr', 'tier': 'likely_remove'},
            {'first_name': 'DrKeep', 'tier': 'definite_remove', 'user_override': 'keep'},
            {'first_name': 'SkRemove', 'tier': 'strong_keep', 'user_override': 'remove'},
            {'first_name': 'Bl', 'tier': 'borderline'},
            {'first_name': 'Pr', 'tier': 'protected', 'is_protected': True},
        ])
        return run, ids

    def test_removal_view(self, run_with_overrides):
        run, _ = run_with_overrides
        names = {r.first_name for r in db.fetch_results_for_export(run.id, 'removal')}
        assert names == {'Lr', 'SkRemove'}

    def test_keep_view(self, run_with_overrides):
        run, _ = run_with_overrides
        names = {r.first_name for r in db.fetch_results_for_export(run.id, 'keep')}
        assert names == {'DrKeep', 'Bl', 'Pr'}

    def test_views_partition_all(self, run_with_overrides):
        run, ids = run_with_overrides
        removal = {r.id for r in db.fetch_results_for_export(run.id, 'removal')}
        keep = {r.id for r in db.fetch_results_for_export(run.id, 'keep')}
        everything = {r.id for r in db.fetch_results_for_export(run.id, 'all', page_size=2)}
        assert removal.isdisjoint(keep)
        assert removal | keep == everything == set(ids)

    def test_unknown_view(self, run_with_overrides):
        run, _ = run_with_overrides
        with pytest.raises(ValueError, match='export view'):
            db.fetch_results_for_export(run.id, 'maybe')
