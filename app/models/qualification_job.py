"""
QualificationJob — Redis-backed standard-mode job.

Standard qualification is short-lived and not resumable, so it never touches
Postgres: the whole job (input, progress and results) is one JSON blob with a
TTL, plus a per-owner sorted set for listing.
"""
import json
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from app import extensions


JOB_TTL = 86400 * 7  # 7 days

JOB_STATUSES = ['queued', 'processing', 'completed', 'failed']


class QualificationJob:
    """
    Keys:
        qualify:{id}              → JSON blob of job state
        qualify:owner:{owner_id}  → sorted set of job IDs by creation time
    """

    def __init__(
        self,
        owner_id: str,
        criteria: Dict = None,
        connections: List[Dict] = None,
        id: str = None,
    ):
        self.id = id or str(uuid.uuid4())
        self.owner_id = owner_id
        self.status = 'queued'
        self.created_at = datetime.now().isoformat()
        self.updated_at = self.created_at
        self.criteria = criteria or {}
        self.connections = connections or []
        self.total_uploaded = 0
        self.prefiltered_out = 0
        self.prefilter_reasons: Dict[str, int] = {}
        self.total_batches = 0
        self.completed_batches = 0
        self.failed_batches = 0
        self.processed = 0
        self.qualified = 0
        self.results: List[Dict] = []
        self.error = ''

    @staticmethod
    def _key(job_id: str) -> str:
        return f'qualify:{job_id}'

    @staticmethod
    def _owner_key(owner_id: str) -> str:
        return f'qualify:owner:{owner_id}'

    def to_dict(self, include_results: bool = True) -> Dict:
        data = {
            'id': self.id,
            'owner_id': self.owner_id,
            'status': self.status,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'criteria': self.criteria,
            'total_uploaded': self.total_uploaded,
            'prefiltered_out': self.prefiltered_out,
            'prefilter_reasons': self.prefilter_reasons,
            'total': len(self.connections),
            'total_batches': self.total_batches,
            'completed_batches': self.completed_batches,
            'failed_batches': self.failed_batches,
            'processed': self.processed,
            'qualified': self.qualified,
            'error': self.error,
        }
        if include_results:
            data['results'] = self.results
        return data

    def save(self):
        """Persist job state to Redis."""
        self.updated_at = datetime.now().isoformat()
        blob = self.to_dict()
        blob['connections'] = self.connections
        r = extensions.redis_client
        r.setex(self._key(self.id), JOB_TTL, json.dumps(blob))
        r.zadd(self._owner_key(self.owner_id), {self.id: datetime.fromisoformat(self.created_at).timestamp()})
        return self

    def complete(self):
        self.status = 'completed'
        self.save()

    def fail(self, reason: str = ''):
        self.status = 'failed'
        self.error = reason
        self.save()

    @classmethod
    def load(cls, job_id: str) -> Optional['QualificationJob']:
        data = extensions.redis_client.get(cls._key(job_id))
        if not data:
            return None
        d = json.loads(data)
        job = cls(owner_id=d['owner_id'], criteria=d.get('criteria', {}),
                  connections=d.get('connections', []), id=d['id'])
        job.status = d['status']
        job.created_at = d['created_at']
        job.updated_at = d.get('updated_at', job.created_at)
        job.total_uploaded = d.get('total_uploaded', 0)
        job.prefiltered_out = d.get('prefiltered_out', 0)
        job.prefilter_reasons = d.get('prefilter_reasons', {})
        job.total_batches = d.get('total_batches', 0)
        job.completed_batches = d.get('completed_batches', 0)
        job.failed_batches = d.get('failed_batches', 0)
        job.processed = d.get('processed', 0)
        job.qualified = d.get('qualified', 0)
        job.results = d.get('results', [])
        job.error = d.get('error', '')
        return job

    @classmethod
    def list_for_owner(cls, owner_id: str, limit: int = 20) -> List['QualificationJob']:
        job_ids = extensions.redis_client.zrevrange(cls._owner_key(owner_id), 0, limit - 1)
        jobs = []
        for job_id in job_ids:
            job = cls.load(job_id)
            if job:
                jobs.append(job)
        return jobs
