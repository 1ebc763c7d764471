"""
Pipeline Manager — ranking run orchestration.

  upload → PHASE 1 (score + tier every record) → review
         → PHASE 2 (enrich the gray zone, pausable) ─┐
         → skip Phase 2 ─────────────────────────────┴→ FINALIZE → completed

Phase 1 and Phase 2 execute as RQ jobs. Everything else in this module is
called from the routes and returns immediately; status changes all go
through app.services.db, which validates them against the state machine.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from app.config import (
    ALL_TIERS, DEFAULT_OWNER_ID, GRAY_ZONE_TIER, PHASE1_CHUNK_SIZE,
    PHASE1_JOB_TIMEOUT, PHASE2_JOB_TIMEOUT, RUN_HISTORY_LIMIT, REMOVAL_TIERS,
)
from app.extensions import get_queue
from app.pipeline import state
from app.pipeline.base import Connection, ProtectedKeywords, QualificationCriteria, ScoreBreakdown
from app.pipeline.cost_config import (
    estimate_phase2_cost, get_confirmation_threshold, get_enrichment_cost_per_call, resolve_budget,
)
from app.pipeline.scoring import assign_tier, get_tier_thresholds, score_connection
from app.services import db
from app.services.notifications import notify_run_complete, notify_run_failed
from app.services.run_control import PauseFlag, clear_run_state, is_worker_active

logger = logging.getLogger('pipeline.manager')


# ── Launch ────────────────────────────────────────────────────────────────────

def launch_ranking(
    owner_id: str,
    name: str,
    connections: List[Connection],
    criteria: QualificationCriteria,
    keywords: Optional[ProtectedKeywords] = None,
    max_budget: Optional[float] = None,
):
    """
    Create a ranking run and enqueue Phase 1 as a background RQ job.

    Raises ValueError on an empty upload, empty criteria or a budget above
    the configured ceiling.
    """
    if not connections:
        raise ValueError("No connections to rank")
    if criteria is None or criteria.is_empty():
        raise ValueError("Criteria need at least one target title, industry or description")
    budget = resolve_budget(max_budget)
    keywords = keywords or ProtectedKeywords()

    run = db.create_ranking_run(
        owner_id or DEFAULT_OWNER_ID, name, criteria.to_dict(), keywords.to_dict(),
        len(connections), max_budget=budget,
    )
    try:
        get_queue().enqueue(
            run_phase1, run.id, [c.to_dict() for c in connections],
            job_timeout=PHASE1_JOB_TIMEOUT,
        )
    except Exception as e:
        logger.error("Could not enqueue Phase 1 for run %s", run.id, exc_info=True)
        db.mark_run_failed(run.id, f"Could not enqueue Phase 1: {e}")
        raise
    logger.info("Launched ranking run %s (%d connections, budget $%.2f)",
                run.id, len(connections), budget, extra={'run_id': run.id})
    return run


# ── Phase 1 (RQ job) ──────────────────────────────────────────────────────────

def build_scored_row(run_id: str, conn: Connection, breakdown: ScoreBreakdown, thresholds=None) -> Dict:
    """Column values for one Phase 1 row. Only the gray zone is queued for enrichment."""
    tier = assign_tier(breakdown.total, breakdown.is_protected, thresholds)
    return {
        'run_id': run_id,
        'first_name': conn.first_name,
        'last_name': conn.last_name,
        'profile_url': conn.url,
        'email': conn.email,
        'company': conn.company,
        'position': conn.position,
        'connected_on': conn.connected_on,
        'title_score': breakdown.title_score,
        'company_score': breakdown.company_score,
        'recency_score': breakdown.recency_score,
        'deterministic_score': breakdown.total,
        'ai_score': None,
        'total_score': breakdown.total,
        'tier': tier,
        'is_protected': breakdown.is_protected,
        'protected_reason': breakdown.protected_reason,
        'enrichment_status': 'pending' if tier == GRAY_ZONE_TIER else 'skipped',
    }


def run_phase1(run_id: str, records: List[Dict], now: Optional[datetime] = None):
    """
    Score and tier every record of the run, persisting in chunks.

    Each chunk's rows and the run's progress counters commit together;
    phase1_complete is only reached once the persisted tier counts add up
    to total_connections. Any error fails the run.
    """
    run = db.get_ranking_run(run_id)
    if run is None:
        logger.error("Run %s not found, dropping Phase 1 job", run_id)
        return None

    try:
        db.transition_run(run_id, state.PHASE1_RUNNING)
    except state.InvalidTransition as e:
        logger.error("Cannot start Phase 1 for run %s: %s", run_id, e, extra={'run_id': run_id})
        # A duplicate job for a run that already moved on must not fail it
        if run.status == state.PENDING:
            _fail_run(run_id, str(e))
        return None

    criteria = QualificationCriteria.from_dict(run.criteria)
    keywords = ProtectedKeywords.from_dict(run.protected_keywords)
    now = now or datetime.now()
    counts = {tier: 0 for tier in ALL_TIERS}
    processed = 0

    try:
        thresholds = get_tier_thresholds()
        for start in range(0, len(records), PHASE1_CHUNK_SIZE):
            rows = []
            for record in records[start:start + PHASE1_CHUNK_SIZE]:
                conn = record if isinstance(record, Connection) else Connection.from_dict(record)
                row = build_scored_row(run_id, conn, score_connection(conn, criteria, keywords, now=now), thresholds)
                counts[row['tier']] += 1
                rows.append(row)
            processed += len(rows)
            db.persist_phase1_chunk(run_id, rows, processed, counts)
            logger.info("Run %s Phase 1: %d/%d scored", run_id, processed, len(records),
                        extra={'run_id': run_id})

        run = db.complete_phase1(run_id)
    except Exception as e:
        logger.error("Phase 1 failed for run %s", run_id, exc_info=True, extra={'run_id': run_id})
        _fail_run(run_id, f"Phase 1 failed: {e}")
        return None

    logger.info("Run %s Phase 1 done — tiers %s", run_id, run.tier_counts, extra={'run_id': run_id})
    return run


# ── Phase 1 review ───────────────────────────────────────────────────────────

def get_tier_samples(run_id: str) -> Dict:
    """Per-tier sample records plus the Phase 2 cost estimate shown before launch."""
    run = _require_run(run_id)
    samples = db.fetch_tier_samples(run_id)
    estimate = estimate_phase2_cost(run.phase2_total or 0)
    return {
        'run_id': run_id,
        'status': run.status,
        'tier_counts': run.tier_counts,
        'phase2_total': run.phase2_total or 0,
        'estimated_phase2_cost': estimate,
        'cost_per_call': get_enrichment_cost_per_call(),
        'confirmation_required': estimate >= get_confirmation_threshold(),
        'max_budget': run.max_budget,
        'samples': {tier: [row.to_dict() for row in rows] for tier, rows in samples.items()},
    }


# ── Phase 2 control ──────────────────────────────────────────────────────────

def _enqueue_phase2(run_id: str):
    from app.pipeline.enrichment import run_phase2
    get_queue().enqueue(run_phase2, run_id, job_timeout=PHASE2_JOB_TIMEOUT)
    logger.info("Enqueued Phase 2 for run %s", run_id, extra={'run_id': run_id})


def start_phase2(run_id: str, max_budget: Optional[float] = None):
    """phase1_complete → phase2_running, then hand the gray zone to the worker."""
    from app.pipeline.enrichment import enrichment_available
    if not enrichment_available():
        raise ValueError("Enrichment service not configured (set OPENAI_API_KEY or MOCK_PIPELINE=1)")

    fields = {}
    if max_budget is not None:
        fields['max_budget'] = resolve_budget(max_budget)
    PauseFlag(run_id).clear()
    run = db.transition_run(run_id, state.PHASE2_RUNNING, **fields)
    _enqueue_phase2(run_id)
    return run


def request_pause(run_id: str):
    """
    Ask a running Phase 2 to stop at the next record boundary.

    With a live worker this only raises the flag and the run stays
    phase2_running until the worker acknowledges it. With no worker holding
    the run (still queued, or crashed) the run is paused directly.
    """
    run = _require_run(run_id)
    if run.status != state.PHASE2_RUNNING:
        raise state.InvalidTransition(run.status, state.PAUSED, 'only a running Phase 2 can be paused')

    if is_worker_active(run_id):
        PauseFlag(run_id).set()
        logger.info("Pause requested for run %s", run_id, extra={'run_id': run_id})
        return run
    return db.transition_run(run_id, state.PAUSED, pause_reason='user')


def resume_run(run_id: str, max_budget: Optional[float] = None):
    """
    Reopen a run from history. Returns (run, screen).

    A paused run goes back to phase2_running with a fresh worker; a run stuck
    in phase2_running with no live worker gets one, and one left in
    phase2_complete by a dead worker is finalized. Every other status just
    maps to the screen it should open on.
    """
    run = _require_run(run_id)

    if run.status == state.PAUSED:
        fields = {}
        budget = run.max_budget
        if max_budget is not None:
            budget = fields['max_budget'] = resolve_budget(max_budget)
        if run.pause_reason == 'budget' and budget is not None:
            next_cost = round(((run.external_calls or 0) + 1) * get_enrichment_cost_per_call(), 6)
            if next_cost > budget:
                raise ValueError(f"Budget of ${budget:.2f} is spent; raise max_budget to resume")
        from app.pipeline.enrichment import enrichment_available
        if not enrichment_available():
            raise ValueError("Enrichment service not configured (set OPENAI_API_KEY or MOCK_PIPELINE=1)")
        PauseFlag(run_id).clear()
        run = db.transition_run(run_id, state.PHASE2_RUNNING, error=None, **fields)
        _enqueue_phase2(run_id)
    elif run.status == state.PHASE2_RUNNING and not is_worker_active(run_id):
        logger.warning("Run %s is phase2_running with no live worker — re-enqueueing", run_id,
                       extra={'run_id': run_id})
        PauseFlag(run_id).clear()
        _enqueue_phase2(run_id)
    elif run.status == state.PHASE2_COMPLETE and not is_worker_active(run_id):
        logger.warning("Run %s stopped before finalization, finalizing now", run_id,
                       extra={'run_id': run_id})
        run = finalize_run(run_id)

    return run, state.screen_for(run.status)


# ── Finalization ─────────────────────────────────────────────────────────────

def finalize_run(run_id: str):
    """Rank, recount and complete the run, then write the summary and notify."""
    try:
        run = db.finalize_ranking(run_id)
    except (state.InvalidTransition, db.RunNotFound):
        raise
    except Exception:
        # finalize_ranking has already rolled back and failed the run
        failed = db.get_ranking_run(run_id)
        if failed is not None:
            failed = db.update_run_fields(run_id, summary=_generate_run_summary(failed, failed=True))
            notify_run_failed(failed)
        raise

    run = db.update_run_fields(run_id, summary=_generate_run_summary(run))
    notify_run_complete(run)
    return run


def skip_phase2(run_id: str):
    """Finalize straight from the review screen without enriching anything."""
    run = _require_run(run_id)
    if run.status != state.PHASE1_COMPLETE:
        raise state.InvalidTransition(run.status, state.COMPLETED, 'Phase 2 can only be skipped after Phase 1')
    logger.info("Run %s skipping Phase 2 (%d in gray zone)", run_id, run.phase2_total or 0,
                extra={'run_id': run_id})
    return finalize_run(run_id)


# ── Run history ──────────────────────────────────────────────────────────────

def list_runs(owner_id: str, limit: int = RUN_HISTORY_LIMIT):
    return db.list_ranking_runs(owner_id or DEFAULT_OWNER_ID, limit=limit)


def get_run_view(run_id: str) -> Dict:
    run = _require_run(run_id)
    data = run.to_dict()
    data['screen'] = state.screen_for(run.status)
    data['estimated_phase2_cost'] = estimate_phase2_cost(run.phase2_total or 0)
    if run.status in (state.PHASE2_RUNNING, state.PAUSED):
        data['worker_active'] = is_worker_active(run_id)
        data['pause_requested'] = PauseFlag(run_id).is_set()
    return data


def delete_run(run_id: str) -> bool:
    run = db.get_ranking_run(run_id)
    if run is None:
        return False
    if run.status == state.PHASE2_RUNNING and is_worker_active(run_id):
        raise state.InvalidTransition(run.status, 'deleted', 'pause the run before deleting it')
    deleted = db.delete_ranking_run(run_id)
    clear_run_state(run_id)
    return deleted


def _require_run(run_id: str):
    run = db.get_ranking_run(run_id)
    if run is None:
        raise db.RunNotFound(run_id)
    return run


def _fail_run(run_id: str, error: str):
    """Mark the run failed, write a failure summary and alert Slack."""
    run = db.mark_run_failed(run_id, error)
    if run is None or run.status != state.FAILED:
        return run
    run = db.update_run_fields(run_id, summary=_generate_run_summary(run, failed=True))
    notify_run_failed(run)
    return run


# ── Run summary ──────────────────────────────────────────────────────────────

def _generate_run_summary(run, failed: bool = False) -> str:
    """Generate a human-readable summary of the run. Pure Python, no API calls.

    Produces a narrative tier breakdown with contextual warnings.
    Works for both completed and failed runs.
    """
    total = run.total_connections or 0
    tiers = run.tier_counts
    protected = tiers.get('protected', 0)
    keep = tiers.get('definite_keep', 0) + tiers.get('strong_keep', 0)
    borderline = tiers.get(GRAY_ZONE_TIER, 0)
    removal = sum(tiers.get(t, 0) for t in REMOVAL_TIERS)
    enriched = run.phase2_processed or 0
    enrich_failed = run.phase2_failed or 0
    gray = run.phase2_total or 0
    cost = run.estimated_cost or 0.0

    if failed:
        return _generate_failed_summary(run, total=total, enriched=enriched, gray=gray, cost=cost)

    if total == 0:
        return "No connections were ranked."

    lines = [
        f"Ranked {total:,} connections: {protected:,} protected, {keep:,} to keep, "
        f"{borderline:,} borderline, {removal:,} flagged for removal."
    ]

    if enriched:
        line = f"Enriched {enriched:,} of {gray:,} gray-zone connections"
        if enrich_failed:
            line += f" ({enrich_failed:,} failed)"
        lines.append(line + '.')
    elif gray:
        lines.append(f"Phase 2 skipped; {gray:,} gray-zone connections kept their deterministic scores.")

    if cost > 0:
        lines.append(f"~${cost:.2f} spent.")

    warnings = _collect_warnings(total=total, keep=keep, protected=protected, removal=removal,
                                 enriched=enriched, enrich_failed=enrich_failed, gray=gray)
    if warnings:
        lines.append('Warning: ' + ' '.join(warnings))

    return ' '.join(lines)


def _generate_failed_summary(run, *, total, enriched, gray, cost) -> str:
    """Build summary for a failed run, including partial progress and error context."""
    scored = run.phase1_processed or 0
    parts = []
    if scored < total:
        parts.append(f"Run failed during Phase 1 after scoring {scored:,} of {total:,} connections.")
    elif gray and enriched:
        parts.append(f"Run failed after enriching {enriched:,} of {gray:,} gray-zone connections.")
    else:
        parts.append(f"Run failed after scoring all {total:,} connections.")

    if cost > 0:
        parts.append(f"~${cost:.2f} spent before failure.")

    if run.error:
        error = run.error if len(run.error) <= 200 else run.error[:197] + '...'
        parts.append(f"Error: {error}")

    return ' '.join(parts)


def _collect_warnings(*, total, keep, protected, removal, enriched, enrich_failed, gray):
    warnings = []
    if enriched and enrich_failed / enriched > 0.2:
        pct = round(enrich_failed / enriched * 100)
        warnings.append(f"{pct}% of enrichment calls failed — those records kept their deterministic tier.")
    if total and removal / total > 0.8:
        warnings.append("Over 80% of connections are flagged for removal; check the target titles.")
    if total >= 50 and keep + protected == 0:
        warnings.append("No connections landed in a keep tier.")
    if gray and enriched and enriched < gray:
        warnings.append(f"{gray - enriched:,} gray-zone connections were never enriched.")
    return warnings
