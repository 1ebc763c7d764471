"""Tests for app.models.qualification_job — Redis-backed standard-mode jobs."""
import json

from app.models.qualification_job import JOB_TTL, QualificationJob


class TestQualificationJob:

    def test_save_writes_blob_and_owner_index(self, mock_redis):
        job = QualificationJob('alice', {'target_titles': ['CEO']}, [{'first_name': 'A'}])
        job.save()

        key, ttl, blob = mock_redis.setex.call_args[0]
        assert key == f'qualify:{job.id}'
        assert ttl == JOB_TTL
        data = json.loads(blob)
        assert data['connections'] == [{'first_name': 'A'}]
        assert data['status'] == 'queued'
        owner_key, mapping = mock_redis.zadd.call_args[0]
        assert owner_key == 'qualify:owner:alice'
        assert list(mapping) == [job.id]

    def test_load_round_trip(self, redis_store):
        job = QualificationJob('alice', {'target_titles': ['CEO']}, [{'first_name': 'A'}])
        job.total_uploaded = 3
        job.prefilter_reasons = {'excluded_title': 2}
        job.results = [{'qualification': 'qualified'}]
        job.save()

        loaded = QualificationJob.load(job.id)
        assert loaded.owner_id == 'alice'
        assert loaded.total_uploaded == 3
        assert loaded.prefilter_reasons == {'excluded_title': 2}
        assert loaded.connections == [{'first_name': 'A'}]
        assert loaded.results == [{'qualification': 'qualified'}]

    def test_load_missing(self, redis_store):
        assert QualificationJob.load('nope') is None

    def test_complete_and_fail(self, redis_store):
        job = QualificationJob('alice')
        job.complete()
        assert QualificationJob.load(job.id).status == 'completed'
        job.fail('classifier down')
        loaded = QualificationJob.load(job.id)
        assert loaded.status == 'failed'
        assert loaded.error == 'classifier down'

    def test_list_for_owner(self, redis_store):
        first = QualificationJob('alice').save()
        second = QualificationJob('alice').save()
        QualificationJob('bob').save()
        ids = {job.id for job in QualificationJob.list_for_owner('alice')}
        assert ids == {first.id, second.id}

    def test_to_dict_without_results(self):
        job = QualificationJob('alice', connections=[{}, {}])
        data = job.to_dict(include_results=False)
        assert 'results' not in data
        assert data['total'] == 2
