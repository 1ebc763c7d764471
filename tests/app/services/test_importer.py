"""Tests for app.services.importer — contact-export CSV and JSON import."""
import pytest

from app.services.importer import ImportFormatError, connections_from_json, parse_connections_csv

LINKEDIN_EXPORT = (
    "Notes:\n"
    "\"When exporting your connection data, you may notice that some of the email addresses are missing.\"\n"
    "\n"
    "First Name,Last Name,URL,Email Address,Company,Position,Connected On\n"
    "Jane,Doe,https://www.linkedin.com/in/janedoe,,Acme Software,VP Marketing,15 Jan 2024\n"
    "John,Smith,https://www.linkedin.com/in/jsmith,john@example.com,\"Initech, Inc.\",Manager,02 Feb 2023\n"
)


class TestParseConnectionsCsv:

    def test_skips_preamble_and_maps_columns(self):
        result = parse_connections_csv(LINKEDIN_EXPORT)
        assert result.total == 2
        assert result.skipped == 0
        jane, john = result.connections
        assert jane.url == 'https://www.linkedin.com/in/janedoe'
        assert jane.connected_on == '15 Jan 2024'
        assert john.company == 'Initech, Inc.'
        assert john.email == 'john@example.com'

    def test_bytes_with_bom(self):
        data = ('\ufeff' + 'First Name,Last Name,Company,Position\nAda,Lovelace,Engines,Founder\n').encode('utf-8')
        result = parse_connections_csv(data)
        assert result.connections[0].first_name == 'Ada'

    def test_latin1_fallback(self):
        data = 'First Name,Last Name,Company,Position\nJos\xe9,Garc\xeda,Acme,CEO\n'.encode('latin-1')
        assert parse_connections_csv(data).connections[0].first_name == 'José'

    def test_alternate_header_spellings(self):
        data = 'firstname,lastname,organization,job title\nA,B,C,D\n'
        conn = parse_connections_csv(data).connections[0]
        assert (conn.company, conn.position) == ('C', 'D')

    def test_nameless_and_overlong_rows_skipped(self):
        data = (
            'First Name,Last Name,Company,Position\n'
            ',,Acme,CEO\n'
            'A,B,C,D,extra\n'
            '\n'
            'Ok,Row,Acme,CEO\n'
        )
        result = parse_connections_csv(data)
        assert [c.first_name for c in result.connections] == ['Ok']
        assert result.skipped == 2

    def test_short_rows_padded(self):
        result = parse_connections_csv('First Name,Last Name,Company,Position\nOnly,Name\n')
        assert result.connections[0].company == ''

    def test_missing_header(self):
        with pytest.raises(ImportFormatError, match='header'):
            parse_connections_csv('name,email\nA,a@example.com\n')

    def test_import_error_is_value_error(self):
        assert issubclass(ImportFormatError, ValueError)


class TestConnectionsFromJson:

    def test_builds_connections(self):
        result = connections_from_json([
            {'first_name': 'A', 'last_name': 'B', 'company': 'C', 'title': 'CEO'},
            {'company': 'Nameless'},
            'not a dict',
        ])
        assert result.total == 1
        assert result.connections[0].position == 'CEO'
        assert result.skipped == 2

    def test_rejects_non_list(self):
        with pytest.raises(ImportFormatError):
            connections_from_json({'first_name': 'A'})
