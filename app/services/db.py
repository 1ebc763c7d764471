"""
Persistence helpers for ranking runs and their scored connections.

Called from the pipeline manager, the Phase 2 worker and the routes. These
writes are the pipeline's state, so errors are logged and re-raised for the
caller to fail the run; nothing here swallows a failed commit.

Every status change goes through transition_run() or finalize_ranking(),
which lock the run row and validate against app.pipeline.state.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func, insert, not_, or_, select, update

from app.config import (
    ALL_TIERS, GRAY_ZONE_TIER, REMOVAL_TIERS, OVERRIDES, EXPORT_PAGE_SIZE,
    RUN_HISTORY_LIMIT, TIER_SAMPLE_SIZE,
)
from app.database import get_session, utcnow
from app.models.ranking_run import RankingRun
from app.models.scored_connection import ScoredConnection
from app.pipeline import state

logger = logging.getLogger('services.db')


class RunNotFound(LookupError):
    def __init__(self, run_id):
        self.run_id = run_id
        super().__init__(f"Ranking run {run_id} not found")


class ConsistencyError(RuntimeError):
    """Tier counts that do not add up to the run total. Only a defect produces this."""


@contextmanager
def session_scope():
    """Commit on success, roll back and re-raise on error, always close."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _lock_run(session, run_id) -> RankingRun:
    run = session.execute(
        select(RankingRun).where(RankingRun.id == run_id).with_for_update()
    ).scalar_one_or_none()
    if run is None:
        raise RunNotFound(run_id)
    return run


def _tier_counts(session, run_id) -> Dict[str, int]:
    counts = {tier: 0 for tier in ALL_TIERS}
    rows = session.execute(
        select(ScoredConnection.tier, func.count())
        .where(ScoredConnection.run_id == run_id)
        .group_by(ScoredConnection.tier)
    ).all()
    for tier, count in rows:
        counts[tier] = count
    return counts


# ── Runs ─────────────────────────────────────────────────────────────────────

def create_ranking_run(owner_id, name, criteria, protected_keywords, total_connections,
                       max_budget=None) -> RankingRun:
    """INSERT a new run in `pending`."""
    run = RankingRun(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        name=name or f"Ranking {utcnow():%Y-%m-%d %H:%M}",
        status=state.PENDING,
        total_connections=total_connections,
        criteria=criteria,
        protected_keywords=protected_keywords,
        max_budget=max_budget,
    )
    with session_scope() as session:
        session.add(run)
    logger.info("Created ranking run %s (%d connections)", run.id, total_connections)
    return run


def get_ranking_run(run_id) -> Optional[RankingRun]:
    session = get_session()
    try:
        return session.get(RankingRun, run_id)
    finally:
        session.close()


def list_ranking_runs(owner_id, limit=RUN_HISTORY_LIMIT) -> List[RankingRun]:
    session = get_session()
    try:
        return (
            session.query(RankingRun)
            .filter(RankingRun.owner_id == owner_id)
            .order_by(RankingRun.created_at.desc())
            .limit(limit)
            .all()
        )
    finally:
        session.close()


def delete_ranking_run(run_id) -> bool:
    """Delete a run and all of its scored connections. False if it did not exist."""
    with session_scope() as session:
        run = session.get(RankingRun, run_id)
        if run is None:
            return False
        deleted = (
            session.query(ScoredConnection)
            .filter(ScoredConnection.run_id == run_id)
            .delete(synchronize_session=False)
        )
        session.delete(run)
    logger.info("Deleted ranking run %s (%d scored connections)", run_id, deleted)
    return True


def update_run_fields(run_id, **fields) -> RankingRun:
    """Plain field update. Refuses to touch status, which has its own path."""
    if 'status' in fields:
        raise ValueError("Use transition_run() to change status")
    with session_scope() as session:
        run = _lock_run(session, run_id)
        for key, value in fields.items():
            setattr(run, key, value)
    return run


def transition_run(run_id, target, **fields) -> RankingRun:
    """Set fields and move the run to `target` in one locked transaction."""
    with session_scope() as session:
        run = _lock_run(session, run_id)
        for key, value in fields.items():
            setattr(run, key, value)
        previous = run.status
        state.apply_transition(run, target)
    logger.info("Run %s: %s → %s", run_id, previous, target, extra={'run_id': run_id})
    return run


def mark_run_failed(run_id, error) -> Optional[RankingRun]:
    """Move a run to `failed` with the error text. Terminal runs are left alone."""
    with session_scope() as session:
        run = _lock_run(session, run_id)
        if state.is_terminal(run.status):
            logger.warning("Run %s already %s, not marking failed", run_id, run.status)
            return run
        run.error = str(error)[:2000]
        state.apply_transition(run, state.FAILED)
    logger.error("Run %s failed: %s", run_id, error, extra={'run_id': run_id})
    return run


# ── Phase 1 ──────────────────────────────────────────────────────────────────

def persist_phase1_chunk(run_id, rows: List[Dict], processed: int, tier_counts: Dict[str, int]):
    """
    Insert one chunk of scored rows, then advance the run's progress counters.

    Both happen in one transaction with the rows written first, so the
    counters never run ahead of the rows they describe.
    """
    if not rows:
        return
    with session_scope() as session:
        session.execute(insert(ScoredConnection), rows)
        session.flush()
        run = _lock_run(session, run_id)
        run.phase1_processed = processed
        run.set_tier_counts(tier_counts)


def complete_phase1(run_id) -> RankingRun:
    """
    Recount tiers from the persisted rows and finish Phase 1 atomically.

    phase2_total is the gray-zone count. Counts must add up to the run total.
    """
    with session_scope() as session:
        run = _lock_run(session, run_id)
        counts = _tier_counts(session, run_id)
        scored = sum(counts.values())
        if scored != run.total_connections:
            raise ConsistencyError(
                f"Run {run_id}: {scored} scored rows but total_connections={run.total_connections}"
            )
        run.set_tier_counts(counts)
        run.phase1_processed = scored
        run.phase2_total = counts[GRAY_ZONE_TIER]
        state.apply_transition(run, state.PHASE1_COMPLETE)
    logger.info("Run %s Phase 1 complete — %d scored, %d in gray zone",
                run_id, scored, run.phase2_total, extra={'run_id': run_id})
    return run


# ── Phase 2 claiming ─────────────────────────────────────────────────────────

def requeue_orphans(run_id) -> int:
    """Return every `processing` row of the run to `pending`.

    Only safe while holding the run's worker lock: no live worker owns them.
    """
    with session_scope() as session:
        result = session.execute(
            update(ScoredConnection)
            .where(
                ScoredConnection.run_id == run_id,
                ScoredConnection.enrichment_status == 'processing',
            )
            .values(enrichment_status='pending', claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
    if count:
        logger.warning("Run %s: requeued %d orphaned records", run_id, count, extra={'run_id': run_id})
    return count


def claim_pending(run_id, limit, token) -> List[ScoredConnection]:
    """Mark up to `limit` pending rows `processing` under `token` and return them."""
    with session_scope() as session:
        ids = session.execute(
            select(ScoredConnection.id)
            .where(
                ScoredConnection.run_id == run_id,
                ScoredConnection.enrichment_status == 'pending',
            )
            .order_by(ScoredConnection.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ).scalars().all()
        if not ids:
            return []
        session.execute(
            update(ScoredConnection)
            .where(
                ScoredConnection.id.in_(ids),
                ScoredConnection.enrichment_status == 'pending',
            )
            .values(enrichment_status='processing', claimed_by=token, claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        claimed = session.execute(
            select(ScoredConnection)
            .where(ScoredConnection.id.in_(ids), ScoredConnection.claimed_by == token)
            .order_by(ScoredConnection.id)
        ).scalars().all()
        return list(claimed)


def release_claims(run_id, token) -> int:
    """Put rows claimed under `token` but not yet processed back to `pending`."""
    with session_scope() as session:
        result = session.execute(
            update(ScoredConnection)
            .where(
                ScoredConnection.run_id == run_id,
                ScoredConnection.claimed_by == token,
                ScoredConnection.enrichment_status == 'processing',
            )
            .values(enrichment_status='pending', claimed_by=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


def record_enrichment(run_id, row_id, token, values: Dict, progress: Dict) -> bool:
    """
    Write one record's enrichment outcome and the run's Phase 2 counters together.

    The row update is conditional on still holding the claim; if another
    worker requeued it, nothing is written and False is returned.
    """
    with session_scope() as session:
        result = session.execute(
            update(ScoredConnection)
            .where(
                ScoredConnection.id == row_id,
                ScoredConnection.claimed_by == token,
                ScoredConnection.enrichment_status == 'processing',
            )
            .values(claimed_by=None, claimed_at=None, **values)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return False
        session.execute(
            update(RankingRun)
            .where(RankingRun.id == run_id)
            .values(updated_at=utcnow(), **progress)
            .execution_options(synchronize_session=False)
        )
        return True


def count_by_enrichment_status(run_id) -> Dict[str, int]:
    session = get_session()
    try:
        rows = session.execute(
            select(ScoredConnection.enrichment_status, func.count())
            .where(ScoredConnection.run_id == run_id)
            .group_by(ScoredConnection.enrichment_status)
        ).all()
        return {status: count for status, count in rows}
    finally:
        session.close()


# ── Finalization ─────────────────────────────────────────────────────────────

def finalize_ranking(run_id) -> RankingRun:
    """
    Rank every record, recount tiers and mark the run completed — one transaction.

    Ranks are dense 1..N by total_score desc, then deterministic_score desc,
    then id. A completed run is rejected rather than re-ranked. Any other
    error rolls everything back and fails the run.
    """
    session = get_session()
    try:
        run = _lock_run(session, run_id)
        if run.status == state.COMPLETED:
            raise state.InvalidTransition(run.status, state.COMPLETED, 'run already finalized')
        state.check_transition(run, state.COMPLETED, finalizing=True)

        ordered = session.execute(
            select(ScoredConnection.id, ScoredConnection.tier)
            .where(ScoredConnection.run_id == run_id)
            .order_by(
                ScoredConnection.total_score.desc(),
                ScoredConnection.deterministic_score.desc(),
                ScoredConnection.id.asc(),
            )
        ).all()
        if ordered:
            session.execute(
                update(ScoredConnection),
                [{'id': row.id, 'rank_position': position} for position, row in enumerate(ordered, start=1)],
            )

        counts = {tier: 0 for tier in ALL_TIERS}
        for row in ordered:
            counts[row.tier] += 1
        if sum(counts.values()) != run.total_connections:
            raise ConsistencyError(
                f"Run {run_id}: tier counts sum to {sum(counts.values())}, "
                f"expected {run.total_connections}"
            )
        run.set_tier_counts(counts)
        state.apply_transition(run, state.COMPLETED, finalizing=True)
        session.commit()
        logger.info("Run %s finalized — %d ranked", run_id, len(ordered), extra={'run_id': run_id})
        return run
    except (state.InvalidTransition, RunNotFound):
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error("Finalization failed for run %s", run_id, exc_info=True)
        mark_run_failed(run_id, f"Finalization failed: {e}")
        raise
    finally:
        session.close()


# ── Results query ────────────────────────────────────────────────────────────

SORT_COLUMNS = {
    'rank_position': ScoredConnection.rank_position,
    'total_score': ScoredConnection.total_score,
    'first_name': ScoredConnection.first_name,
}


def fetch_results(run_id, tier=None, search=None, sort_by='rank_position', ascending=True,
                  limit=50, offset=0) -> Tuple[List[ScoredConnection], int]:
    """Filtered, sorted, paginated results. Returns (rows, total_matching)."""
    column = SORT_COLUMNS.get(sort_by)
    if column is None:
        raise ValueError(f"Unknown sort field '{sort_by}'. Use one of {sorted(SORT_COLUMNS)}")
    if tier and tier not in ALL_TIERS:
        raise ValueError(f"Unknown tier '{tier}'")

    session = get_session()
    try:
        q = session.query(ScoredConnection).filter(ScoredConnection.run_id == run_id)
        if tier:
            q = q.filter(ScoredConnection.tier == tier)
        if search and search.strip():
            term = f'%{search.strip()}%'
            q = q.filter(or_(
                ScoredConnection.first_name.ilike(term),
                ScoredConnection.last_name.ilike(term),
                ScoredConnection.company.ilike(term),
                ScoredConnection.position.ilike(term),
            ))
        total = q.count()
        order = column.asc().nulls_last() if ascending else column.desc().nulls_last()
        rows = (
            q.order_by(order, ScoredConnection.total_score.desc(), ScoredConnection.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total
    finally:
        session.close()


def fetch_tier_samples(run_id, per_tier=TIER_SAMPLE_SIZE) -> Dict[str, List[ScoredConnection]]:
    """Top `per_tier` records of each tier by deterministic score, for Phase 1 review."""
    session = get_session()
    try:
        samples = {}
        for tier in ALL_TIERS:
            samples[tier] = (
                session.query(ScoredConnection)
                .filter(ScoredConnection.run_id == run_id, ScoredConnection.tier == tier)
                .order_by(ScoredConnection.deterministic_score.desc(), ScoredConnection.id.asc())
                .limit(per_tier)
                .all()
            )
        return samples
    finally:
        session.close()


def set_user_override(run_id, result_id, override) -> Optional[ScoredConnection]:
    """Set or clear (None) a keep/remove override. Score and tier are untouched."""
    if override is not None and override not in OVERRIDES:
        raise ValueError(f"override must be one of {OVERRIDES} or null")
    with session_scope() as session:
        row = session.get(ScoredConnection, result_id)
        if row is None or row.run_id != run_id:
            return None
        row.user_override = override
    return row


def _removal_clause():
    override = func.coalesce(ScoredConnection.user_override, '')
    return or_(
        override == 'remove',
        and_(ScoredConnection.tier.in_(REMOVAL_TIERS), override != 'keep'),
    )


def fetch_results_for_export(run_id, view='all', page_size=EXPORT_PAGE_SIZE) -> List[ScoredConnection]:
    """
    All rows of one export view, read in pages ordered by rank.

    removal: removal tiers not overridden to keep, plus anything overridden
             to remove. keep: everything else. all: every row.
    """
    session = get_session()
    try:
        q = session.query(ScoredConnection).filter(ScoredConnection.run_id == run_id)
        if view == 'removal':
            q = q.filter(_removal_clause())
        elif view == 'keep':
            q = q.filter(not_(_removal_clause()))
        elif view != 'all':
            raise ValueError(f"Unknown export view '{view}'")
        q = q.order_by(
            ScoredConnection.rank_position.asc().nulls_last(),
            ScoredConnection.total_score.desc(),
            ScoredConnection.id.asc(),
        )

        rows = []
        offset = 0
        while True:
            page = q.offset(offset).limit(page_size).all()
            rows.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
        return rows
    finally:
        session.close()
