"""
Ranking routes — launch, review, Phase 2 control, results, overrides, export.
"""
import json
import logging

from flask import Blueprint, Response, jsonify, request, session

from app.config import ALL_TIERS, DEFAULT_OWNER_ID, EXPORT_VIEWS, RUN_HISTORY_LIMIT
from app.pipeline import manager
from app.pipeline.base import ProtectedKeywords, QualificationCriteria
from app.routes.errors import error_response, register_error_handlers
from app.services import db
from app.services.export import export_filename, generate_export_csv
from app.services.importer import connections_from_json, parse_connections_csv

logger = logging.getLogger('routes.rankings')

bp = Blueprint('rankings', __name__)
register_error_handlers(bp)

MAX_PAGE_SIZE = 200


def owner_id() -> str:
    return request.headers.get('X-Owner-Id') or session.get('owner_id') or DEFAULT_OWNER_ID


def _owned_run(run_id):
    """Load a run belonging to the caller; other owners' runs look missing."""
    run = db.get_ranking_run(run_id)
    if run is None or run.owner_id != owner_id():
        raise db.RunNotFound(run_id)
    return run


def _json_field(value, name):
    """A dict field that may arrive as a JSON string (multipart form) or inline (JSON body)."""
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else None
        except ValueError:
            raise ValueError(f"{name} must be a JSON object")
    if value is not None and not isinstance(value, dict):
        raise ValueError(f"{name} must be a JSON object")
    return value


def _optional_float(value, name):
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number")


def _read_upload():
    """(ImportResult, fields) from a multipart CSV upload or a JSON body."""
    if request.files.get('file'):
        imported = parse_connections_csv(request.files['file'].read())
        fields = request.form
    else:
        fields = request.get_json(silent=True) or {}
        imported = connections_from_json(fields.get('connections') or [])
    return imported, fields


# ── Runs ─────────────────────────────────────────────────────────────────────

@bp.route('/api/rankings', methods=['POST'])
def create_ranking():
    """Upload connections and start Phase 1."""
    imported, fields = _read_upload()
    criteria = QualificationCriteria.from_dict(_json_field(fields.get('criteria'), 'criteria'))
    keywords_data = _json_field(fields.get('protected_keywords'), 'protected_keywords')
    run = manager.launch_ranking(
        owner_id=owner_id(),
        name=fields.get('name') or '',
        connections=imported.connections,
        criteria=criteria,
        keywords=ProtectedKeywords.from_dict(keywords_data),
        max_budget=_optional_float(fields.get('max_budget'), 'max_budget'),
    )
    data = run.to_dict()
    data['skipped_rows'] = imported.skipped
    return jsonify(data), 202


@bp.route('/api/rankings')
def list_rankings():
    limit = min(request.args.get('limit', RUN_HISTORY_LIMIT, type=int), 100)
    runs = manager.list_runs(owner_id(), limit=limit)
    return jsonify([run.to_dict() for run in runs])


@bp.route('/api/rankings/<run_id>')
def get_ranking(run_id):
    _owned_run(run_id)
    return jsonify(manager.get_run_view(run_id))


@bp.route('/api/rankings/<run_id>', methods=['DELETE'])
def delete_ranking(run_id):
    _owned_run(run_id)
    manager.delete_run(run_id)
    return jsonify({'ok': True})


# ── Phase 1 review + Phase 2 control ─────────────────────────────────────────

@bp.route('/api/rankings/<run_id>/samples')
def tier_samples(run_id):
    _owned_run(run_id)
    return jsonify(manager.get_tier_samples(run_id))


@bp.route('/api/rankings/<run_id>/phase2', methods=['POST'])
def start_phase2(run_id):
    _owned_run(run_id)
    data = request.get_json(silent=True) or {}
    run = manager.start_phase2(run_id, max_budget=_optional_float(data.get('max_budget'), 'max_budget'))
    return jsonify(run.to_dict()), 202


@bp.route('/api/rankings/<run_id>/skip-phase2', methods=['POST'])
def skip_phase2(run_id):
    _owned_run(run_id)
    run = manager.skip_phase2(run_id)
    return jsonify(run.to_dict())


@bp.route('/api/rankings/<run_id>/pause', methods=['POST'])
def pause(run_id):
    _owned_run(run_id)
    run = manager.request_pause(run_id)
    data = run.to_dict()
    data['pause_requested'] = True
    return jsonify(data), 202


@bp.route('/api/rankings/<run_id>/resume', methods=['POST'])
def resume(run_id):
    _owned_run(run_id)
    data = request.get_json(silent=True) or {}
    run, screen = manager.resume_run(run_id, max_budget=_optional_float(data.get('max_budget'), 'max_budget'))
    body = run.to_dict()
    body['screen'] = screen
    return jsonify(body)


# ── Results ──────────────────────────────────────────────────────────────────

@bp.route('/api/rankings/<run_id>/results')
def results(run_id):
    """Paginated results. ?tier=&search=&sort_by=&order=asc|desc&page=&per_page="""
    _owned_run(run_id)
    tier = request.args.get('tier') or None
    if tier and tier not in ALL_TIERS:
        return error_response(f"Unknown tier '{tier}'", 400)
    page = max(request.args.get('page', 1, type=int), 1)
    per_page = min(max(request.args.get('per_page', 50, type=int), 1), MAX_PAGE_SIZE)

    rows, total = db.fetch_results(
        run_id,
        tier=tier,
        search=request.args.get('search'),
        sort_by=request.args.get('sort_by', 'rank_position'),
        ascending=request.args.get('order', 'asc') != 'desc',
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return jsonify({
        'results': [row.to_dict() for row in rows],
        'total': total,
        'page': page,
        'per_page': per_page,
    })


@bp.route('/api/rankings/<run_id>/results/<int:result_id>', methods=['PATCH'])
def set_override(run_id, result_id):
    """Set or clear a keep/remove override. Body: {"override": "keep" | "remove" | null}"""
    _owned_run(run_id)
    data = request.get_json(silent=True) or {}
    if 'override' not in data:
        return error_response("Body must include 'override'", 400)
    row = db.set_user_override(run_id, result_id, data['override'])
    if row is None:
        return error_response('Result not found', 404)
    return jsonify(row.to_dict())


@bp.route('/api/rankings/<run_id>/export/<view>')
def export(run_id, view):
    _owned_run(run_id)
    if view not in EXPORT_VIEWS:
        return error_response(f"Unknown export view '{view}'. Use one of {list(EXPORT_VIEWS)}", 400)
    rows = db.fetch_results_for_export(run_id, view)
    logger.info("Exporting %d rows (%s) for run %s", len(rows), view, run_id)
    return Response(
        generate_export_csv(rows),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{export_filename(view)}"'},
    )
