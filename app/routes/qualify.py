"""
Standard-mode routes — quick qualification jobs backed by Redis.
"""
import logging

from flask import Blueprint, Response, jsonify, request

from app.models.qualification_job import QualificationJob
from app.pipeline.base import QualificationCriteria
from app.pipeline.qualifier import launch_qualification
from app.routes.errors import error_response, register_error_handlers
from app.routes.rankings import _json_field, _read_upload, owner_id
from app.services.export import generate_qualification_csv

logger = logging.getLogger('routes.qualify')

bp = Blueprint('qualify', __name__)
register_error_handlers(bp)


def _owned_job(job_id):
    job = QualificationJob.load(job_id)
    if job is None or job.owner_id != owner_id():
        return None
    return job


@bp.route('/api/qualify', methods=['POST'])
def create_job():
    imported, fields = _read_upload()
    criteria = QualificationCriteria.from_dict(_json_field(fields.get('criteria'), 'criteria'))
    job = launch_qualification(owner_id(), imported.connections, criteria)
    data = job.to_dict(include_results=False)
    data['skipped_rows'] = imported.skipped
    return jsonify(data), 202


@bp.route('/api/qualify')
def list_jobs():
    jobs = QualificationJob.list_for_owner(owner_id())
    return jsonify([job.to_dict(include_results=False) for job in jobs])


@bp.route('/api/qualify/<job_id>')
def get_job(job_id):
    job = _owned_job(job_id)
    if job is None:
        return error_response('Job not found', 404)
    return jsonify(job.to_dict())


@bp.route('/api/qualify/<job_id>/export')
def export_job(job_id):
    job = _owned_job(job_id)
    if job is None:
        return error_response('Job not found', 404)
    qualified_only = request.args.get('qualified') == '1'
    results = [r for r in job.results if not qualified_only or r.get('qualification') == 'qualified']
    return Response(
        generate_qualification_csv(results),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="qualification-{job_id[:8]}.csv"'},
    )
