"""
Phase 2: ENRICHMENT — web-grounded scoring of the gray zone.

One RQ job per run, processing `borderline` records one at a time:

  claim batch → per record: pause? budget? → enrich → write row + counters

The job holds a per-run Redis lock for its whole life, so at most one
worker touches a run. Pause is cooperative: the flag is checked between
records, never mid-call. Budget and circuit-breaker stops pause the run
the same way, with a pause_reason saying why. A resumed run starts a fresh
job that picks up whatever is still pending.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from redis.exceptions import LockError

from app import extensions
from app.config import PHASE2_BATCH_SIZE
from app.pipeline import state
from app.pipeline.base import EnrichmentResult, QualificationCriteria
from app.pipeline.cost_config import get_default_budget, get_enrichment_cost_per_call, get_warning_threshold
from app.pipeline.scoring import assign_tier
from app.services import db
from app.services.circuit_breaker import CircuitOpenError
from app.services.openai_client import enrich_connections
from app.services.run_control import PauseFlag, release_quietly, worker_lock

logger = logging.getLogger('pipeline.enrichment')

Enricher = Callable[[List[Dict], QualificationCriteria], List[EnrichmentResult]]


def get_enricher() -> Enricher:
    if os.getenv('MOCK_PIPELINE'):
        from app.pipeline.mock_adapters import mock_enrich_connections
        logger.info("MOCK_PIPELINE active — using fake enrichment")
        return mock_enrich_connections
    return enrich_connections


def enrichment_available() -> bool:
    return bool(os.getenv('MOCK_PIPELINE')) or extensions.openai_client is not None


@dataclass
class Phase2Progress:
    """
    The worker's running counters, seeded from the persisted run.

    Cost is always derived from the call count, never accumulated, so it
    cannot drift from external_calls.
    """
    processed: int = 0
    failed: int = 0
    external_calls: int = 0
    cost_per_call: float = 0.0

    @classmethod
    def from_run(cls, run, cost_per_call: float) -> 'Phase2Progress':
        return cls(
            processed=run.phase2_processed or 0,
            failed=run.phase2_failed or 0,
            external_calls=run.external_calls or 0,
            cost_per_call=cost_per_call,
        )

    def cost_for(self, calls: int) -> float:
        return round(calls * self.cost_per_call, 6)

    @property
    def cost(self) -> float:
        return self.cost_for(self.external_calls)

    @property
    def next_call_cost(self) -> float:
        return self.cost_for(self.external_calls + 1)

    def columns_after(self, failed: bool) -> Dict:
        """Run columns as they will be once one more record is recorded."""
        calls = self.external_calls + 1
        return {
            'phase2_processed': self.processed + 1,
            'phase2_failed': self.failed + (1 if failed else 0),
            'external_calls': calls,
            'estimated_cost': self.cost_for(calls),
        }

    def spend_call(self):
        self.external_calls += 1

    def advance(self, failed: bool):
        self.processed += 1
        self.spend_call()
        if failed:
            self.failed += 1


# ── RQ job ───────────────────────────────────────────────────────────────────

def run_phase2(run_id: str, enrich: Optional[Enricher] = None, pause_flag: Optional[PauseFlag] = None,
               lock=None, batch_size: int = PHASE2_BATCH_SIZE):
    """
    Enrich every pending gray-zone record of a phase2_running run.

    Returns the run as it stands when the worker exits: paused, completed,
    or unchanged when another worker already owns it. A systemic error
    (database, Redis) leaves the run phase2_running with `error` set so it
    can be resumed, and is re-raised for RQ to record.
    """
    run = db.get_ranking_run(run_id)
    if run is None:
        logger.error("Run %s not found, dropping Phase 2 job", run_id)
        return None
    if run.status != state.PHASE2_RUNNING:
        logger.info("Run %s is %s, nothing to enrich", run_id, run.status, extra={'run_id': run_id})
        return run

    lock = lock or worker_lock(run_id)
    if not lock.acquire(blocking=False):
        logger.info("Run %s already has a live worker — exiting", run_id, extra={'run_id': run_id})
        return run

    token = uuid.uuid4().hex
    try:
        # A pause applied directly while no worker held the lock wins
        run = db.get_ranking_run(run_id)
        if run is None or run.status != state.PHASE2_RUNNING:
            logger.info("Run %s left phase2_running before the worker started, exiting", run_id,
                        extra={'run_id': run_id})
            return run
        return _process_run(run, enrich or get_enricher(), pause_flag or PauseFlag(run_id), lock, token, batch_size)
    except Exception as e:
        logger.error("Phase 2 interrupted for run %s", run_id, exc_info=True, extra={'run_id': run_id})
        _record_interruption(run_id, token, e)
        raise
    finally:
        release_quietly(lock, run_id)


def _process_run(run, enrich: Enricher, pause_flag: PauseFlag, lock, token: str, batch_size: int):
    run_id = run.id
    requeued = db.requeue_orphans(run_id)
    criteria = QualificationCriteria.from_dict(run.criteria)
    progress = Phase2Progress.from_run(run, get_enrichment_cost_per_call())
    budget = run.max_budget if run.max_budget is not None else get_default_budget()
    warn_at = budget * get_warning_threshold()
    warned = progress.cost >= warn_at

    logger.info("Run %s Phase 2 worker started (%d/%d done, %d requeued, $%.4f of $%.2f)",
                run_id, progress.processed, run.phase2_total or 0, requeued, progress.cost, budget,
                extra={'run_id': run_id})

    while True:
        if pause_flag.is_set():
            return _pause(run_id, 'user', pause_flag)

        batch = db.claim_pending(run_id, batch_size, token)
        if not batch:
            break

        for row in batch:
            if pause_flag.is_set():
                db.release_claims(run_id, token)
                return _pause(run_id, 'user', pause_flag)

            if progress.next_call_cost > budget:
                db.release_claims(run_id, token)
                logger.warning("Run %s reached its $%.2f budget after %d calls", run_id, budget,
                               progress.external_calls, extra={'run_id': run_id})
                return _pause(run_id, 'budget', pause_flag)

            try:
                result = enrich_record(enrich, row, criteria)
            except CircuitOpenError as e:
                db.release_claims(run_id, token)
                logger.warning("Run %s pausing — %s", run_id, e, extra={'run_id': run_id})
                return _pause(run_id, 'service_unavailable', pause_flag)

            failed = not result.ok
            if db.record_enrichment(run_id, row.id, token, result_columns(row, result),
                                    progress.columns_after(failed)):
                progress.advance(failed)
            else:
                # The call was still made and billed
                progress.spend_call()
                db.update_run_fields(run_id, external_calls=progress.external_calls, estimated_cost=progress.cost)
                logger.warning("Run %s lost its claim on record %s, result discarded", run_id, row.id,
                               extra={'run_id': run_id})

            if not warned and progress.cost >= warn_at:
                warned = True
                logger.warning("Run %s has spent $%.2f of its $%.2f budget", run_id, progress.cost, budget,
                               extra={'run_id': run_id})

            try:
                lock.reacquire()
            except LockError:
                logger.error("Run %s worker lock lost — stopping without pausing", run_id,
                             extra={'run_id': run_id})
                db.release_claims(run_id, token)
                return db.get_ranking_run(run_id)

        logger.info("Run %s Phase 2: %d/%d processed (%d failed, $%.4f)", run_id, progress.processed,
                    run.phase2_total or 0, progress.failed, progress.cost, extra={'run_id': run_id})

    remaining = db.count_by_enrichment_status(run_id)
    if remaining.get('pending') or remaining.get('processing'):
        logger.warning("Run %s still has unfinished records %s, leaving it running", run_id, remaining,
                       extra={'run_id': run_id})
        return db.get_ranking_run(run_id)

    db.transition_run(run_id, state.PHASE2_COMPLETE)
    from app.pipeline.manager import finalize_run
    return finalize_run(run_id)


def _pause(run_id: str, reason: str, pause_flag: PauseFlag):
    run = db.transition_run(run_id, state.PAUSED, pause_reason=reason)
    pause_flag.clear()
    logger.info("Run %s paused (%s)", run_id, reason, extra={'run_id': run_id})
    return run


def _record_interruption(run_id: str, token: str, error: Exception):
    """Best-effort cleanup after a systemic failure; the original error is what gets raised."""
    try:
        db.release_claims(run_id, token)
        db.update_run_fields(run_id, error=f"Phase 2 interrupted: {error}"[:2000])
    except Exception:
        logger.error("Cleanup after Phase 2 interruption failed for run %s", run_id, exc_info=True)


# ── Per-record helpers ───────────────────────────────────────────────────────

def enrichment_payload(row) -> Dict:
    return {
        'id': row.id,
        'name': row.full_name,
        'company': row.company or '',
        'title': row.position or '',
        'deterministic_score': row.deterministic_score,
    }


def enrich_record(enrich: Enricher, row, criteria: QualificationCriteria) -> EnrichmentResult:
    """
    One external call for one record, correlated by id.

    Service errors become a failed result; only an open circuit propagates,
    since that stops the whole run rather than one record.
    """
    try:
        results = enrich([enrichment_payload(row)], criteria)
    except CircuitOpenError:
        raise
    except Exception as e:
        logger.warning("Enrichment failed for record %s: %s", row.id, e)
        return EnrichmentResult(id=row.id, error=str(e)[:500])

    for result in results or []:
        if result.id == row.id:
            return result
    return EnrichmentResult(id=row.id, error='No result returned')


def result_columns(row, result: EnrichmentResult) -> Dict:
    """Row updates for an enrichment outcome. Failures keep the deterministic score and tier."""
    if not result.ok:
        return {
            'enrichment_status': 'failed',
            'enrichment_error': result.error,
            'ai_reasoning': f"Error: {result.error}",
            'grounding_data': result.sources or None,
        }
    total = row.deterministic_score + result.ai_score
    return {
        'enrichment_status': 'done',
        'enrichment_error': None,
        'ai_score': result.ai_score,
        'total_score': total,
        'tier': assign_tier(total, row.is_protected),
        'ai_reasoning': result.reasoning,
        'ai_geography': result.geography,
        'ai_industry': result.industry,
        'ai_company_size': result.company_size,
        'grounding_data': result.sources or None,
    }
