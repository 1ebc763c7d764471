"""
CSV export projections for ranking runs and standard qualification jobs.

Column order is a contract downstream spreadsheets depend on.
"""
import csv
import io
from typing import Dict, Iterable, List

RANKING_COLUMNS = [
    'Rank', 'First Name', 'Last Name', 'URL', 'Email', 'Company', 'Position',
    'Connected On', 'Total Score', 'Title Score', 'Company Score', 'Recency Score',
    'AI Score', 'Tier', 'Protected', 'Geography', 'Industry', 'Override',
]

QUALIFICATION_COLUMNS = [
    'First Name', 'Last Name', 'URL', 'Email', 'Company', 'Position',
    'Connected On', 'Qualification', 'Confidence', 'Reasoning',
]

EXPORT_FILENAMES = {
    'removal': 'connection-ranking-removal-list.csv',
    'keep': 'connection-ranking-keep-list.csv',
    'all': 'connection-ranking-all-scores.csv',
}


def _blank(value):
    return '' if value is None else value


def ranking_row(row) -> List:
    return [
        _blank(row.rank_position),
        row.first_name or '',
        row.last_name or '',
        row.profile_url or '',
        row.email or '',
        row.company or '',
        row.position or '',
        row.connected_on or '',
        row.total_score,
        row.title_score,
        row.company_score,
        row.recency_score,
        _blank(row.ai_score),
        row.tier,
        'Yes' if row.is_protected else 'No',
        row.ai_geography or '',
        row.ai_industry or '',
        row.user_override or '',
    ]


def _write(header: List[str], rows: Iterable[List]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator='\n')
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue()


def generate_export_csv(rows) -> str:
    """Scored connections → CSV text with the fixed ranking header."""
    return _write(RANKING_COLUMNS, (ranking_row(r) for r in rows))


def generate_qualification_csv(results: List[Dict]) -> str:
    """Standard-mode results (dicts with a nested `connection`) → CSV text."""
    def to_row(result):
        conn = result.get('connection') or {}
        return [
            conn.get('first_name', ''), conn.get('last_name', ''), conn.get('url', ''),
            conn.get('email', ''), conn.get('company', ''), conn.get('position', ''),
            conn.get('connected_on', ''), result.get('qualification', ''),
            result.get('confidence', ''), result.get('reasoning', ''),
        ]
    return _write(QUALIFICATION_COLUMNS, (to_row(r) for r in results))


def export_filename(view: str) -> str:
    return EXPORT_FILENAMES[view]
