"""
Standard mode — quick qualified / not-qualified verdicts, no ranking.

  upload → PRE-FILTER (rule-based) → CLASSIFY in batches of 50 → results

Runs as a single RQ job against a Redis-backed QualificationJob. A batch
that fails is not retried: every record in it comes back not_qualified
with a "retry recommended" note, and the remaining batches still run.
"""
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from app import extensions
from app.config import QUALIFY_BATCH_SIZE, QUALIFY_JOB_TIMEOUT
from app.extensions import get_queue
from app.models.qualification_job import QualificationJob
from app.pipeline.base import Connection, QualificationCriteria, QualificationResult
from app.pipeline.prescreen import pre_filter
from app.services.anthropic_client import classify_connections

logger = logging.getLogger('pipeline.qualifier')

BATCH_FAILED_REASONING = 'Batch processing failed — retry recommended'
NO_RESULT_REASONING = 'No result returned'

QUALIFICATIONS = ('qualified', 'not_qualified')
CONFIDENCES = ('high', 'medium', 'low')

Classifier = Callable[[List[Dict], QualificationCriteria], List[Any]]


def get_classifier() -> Classifier:
    if os.getenv('MOCK_PIPELINE'):
        from app.pipeline.mock_adapters import mock_classify_connections
        logger.info("MOCK_PIPELINE active — using fake classifier")
        return mock_classify_connections
    return classify_connections


def classifier_available() -> bool:
    return bool(os.getenv('MOCK_PIPELINE')) or extensions.anthropic_client is not None


@dataclass
class QualificationOutcome:
    results: List[QualificationResult] = field(default_factory=list)
    qualified: int = 0
    failed_batches: int = 0


def normalize_verdict(entry, conn: Connection) -> QualificationResult:
    """Coerce one classifier entry; anything missing or malformed counts as no result."""
    if not isinstance(entry, dict) or entry.get('qualification') not in QUALIFICATIONS:
        return QualificationResult('not_qualified', 'low', NO_RESULT_REASONING, conn.to_dict())
    confidence = entry.get('confidence')
    return QualificationResult(
        qualification=entry['qualification'],
        confidence=confidence if confidence in CONFIDENCES else 'low',
        reasoning=str(entry.get('reasoning') or ''),
        connection=conn.to_dict(),
    )


def qualify_batch(batch: List[Connection], criteria: QualificationCriteria, classify: Classifier):
    """Classify one batch. Returns (results, failed) with exactly one result per input."""
    payload = [{'name': c.full_name, 'company': c.company, 'title': c.position} for c in batch]
    try:
        verdicts = list(classify(payload, criteria) or [])
    except Exception as e:
        logger.warning("Classifier batch of %d failed: %s", len(batch), e)
        return [
            QualificationResult('not_qualified', 'low', BATCH_FAILED_REASONING, c.to_dict())
            for c in batch
        ], True

    return [
        normalize_verdict(verdicts[i] if i < len(verdicts) else None, conn)
        for i, conn in enumerate(batch)
    ], False


def qualify_connections(
    connections: List[Connection],
    criteria: QualificationCriteria,
    classify: Optional[Classifier] = None,
    batch_size: int = QUALIFY_BATCH_SIZE,
    on_batch: Optional[Callable] = None,
) -> QualificationOutcome:
    """
    Classify every connection, batch by batch.

    on_batch(batch_number, total_batches, results, failed) is called after
    each batch so the caller can persist progress.
    """
    classify = classify or get_classifier()
    outcome = QualificationOutcome()
    total_batches = math.ceil(len(connections) / batch_size) if connections else 0

    for number, start in enumerate(range(0, len(connections), batch_size), start=1):
        results, failed = qualify_batch(connections[start:start + batch_size], criteria, classify)
        outcome.results.extend(results)
        outcome.qualified += sum(1 for r in results if r.qualification == 'qualified')
        if failed:
            outcome.failed_batches += 1
        if on_batch:
            on_batch(number, total_batches, results, failed)

    return outcome


# ── Job lifecycle ────────────────────────────────────────────────────────────

def launch_qualification(owner_id: str, connections: List[Connection], criteria: QualificationCriteria):
    """Pre-filter, store the job in Redis and enqueue classification."""
    if not connections:
        raise ValueError("No connections to qualify")
    if criteria.is_empty():
        raise ValueError("Criteria need at least one target title, industry or description")

    prefilter = pre_filter(connections, criteria)
    job = QualificationJob(owner_id, criteria.to_dict(), [c.to_dict() for c in prefilter.kept])
    job.total_uploaded = len(connections)
    job.prefiltered_out = len(prefilter.removed)
    job.prefilter_reasons = prefilter.reasons
    job.total_batches = math.ceil(len(prefilter.kept) / QUALIFY_BATCH_SIZE)
    job.save()

    if not prefilter.kept:
        job.complete()
        return job

    if not classifier_available():
        job.fail("Classifier not configured (set ANTHROPIC_API_KEY or MOCK_PIPELINE=1)")
        return job

    get_queue().enqueue(run_qualification, job.id, job_timeout=QUALIFY_JOB_TIMEOUT)
    logger.info("Launched qualification job %s (%d of %d after pre-filter)",
                job.id, len(prefilter.kept), len(connections))
    return job


def run_qualification(job_id: str, classify: Optional[Classifier] = None):
    """RQ job: classify a stored job's connections, saving after every batch."""
    job = QualificationJob.load(job_id)
    if job is None:
        logger.error("Qualification job %s not found (expired?)", job_id)
        return None

    job.status = 'processing'
    job.save()
    connections = [Connection.from_dict(c) for c in job.connections]
    criteria = QualificationCriteria.from_dict(job.criteria)

    def on_batch(number, total, results, failed):
        job.completed_batches = number
        job.processed += len(results)
        job.qualified += sum(1 for r in results if r.qualification == 'qualified')
        if failed:
            job.failed_batches += 1
        job.results.extend(r.to_dict() for r in results)
        job.save()
        logger.info("Qualification job %s: batch %d/%d", job_id, number, total)

    try:
        qualify_connections(connections, criteria, classify=classify, on_batch=on_batch)
    except Exception as e:
        logger.error("Qualification job %s failed", job_id, exc_info=True)
        job.fail(str(e))
        return job

    job.complete()
    logger.info("Qualification job %s complete — %d/%d qualified", job_id, job.qualified, job.processed)
    return job
