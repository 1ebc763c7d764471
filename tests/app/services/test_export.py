"""Tests for app.services.export — CSV projections."""
import csv
import io
from types import SimpleNamespace

from app.services.export import (
    QUALIFICATION_COLUMNS, RANKING_COLUMNS, export_filename, generate_export_csv,
    generate_qualification_csv,
)


def _scored(**kw):
    values = dict(
        rank_position=1, first_name='Jane', last_name='Doe', profile_url='https://example.com/jane',
        email='', company='Acme, Inc.', position='VP Marketing', connected_on='15 Jan 2024',
        total_score=58, title_score=40, company_score=8, recency_score=10, ai_score=None,
        tier='strong_keep', is_protected=False, ai_geography=None, ai_industry=None, user_override=None,
    )
    values.update(kw)
    return SimpleNamespace(**values)


def _parse(text):
    return list(csv.reader(io.StringIO(text)))


class TestRankingExport:

    def test_header_order(self):
        assert _parse(generate_export_csv([]))[0] == RANKING_COLUMNS

    def test_row_projection(self):
        rows = _parse(generate_export_csv([_scored()]))
        assert rows[1] == [
            '1', 'Jane', 'Doe', 'https://example.com/jane', '', 'Acme, Inc.', 'VP Marketing',
            '15 Jan 2024', '58', '40', '8', '10', '', 'strong_keep', 'No', '', '', '',
        ]

    def test_enriched_protected_overridden(self):
        rows = _parse(generate_export_csv([_scored(
            ai_score=18, is_protected=True, tier='protected', ai_geography='Canada',
            ai_industry='Software', user_override='keep', rank_position=None,
        )]))
        row = dict(zip(RANKING_COLUMNS, rows[1]))
        assert row['AI Score'] == '18'
        assert row['Protected'] == 'Yes'
        assert row['Geography'] == 'Canada'
        assert row['Override'] == 'keep'
        assert row['Rank'] == ''

    def test_filenames(self):
        assert export_filename('removal') == 'connection-ranking-removal-list.csv'
        assert export_filename('keep') == 'connection-ranking-keep-list.csv'
        assert export_filename('all') == 'connection-ranking-all-scores.csv'


class TestQualificationExport:

    def test_flattens_connection(self):
        text = generate_qualification_csv([{
            'qualification': 'qualified', 'confidence': 'high', 'reasoning': 'Fits, clearly',
            'connection': {'first_name': 'A', 'last_name': 'B', 'company': 'C', 'position': 'CEO'},
        }])
        rows = _parse(text)
        assert rows[0] == QUALIFICATION_COLUMNS
        assert rows[1] == ['A', 'B', '', '', 'C', 'CEO', '', 'qualified', 'high', 'Fits, clearly']
