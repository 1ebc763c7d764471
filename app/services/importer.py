"""
Connection import — contact-export CSV into Connection records.

LinkedIn's "Connections.csv" starts with a few "Notes:" lines before the
header row, so the header is located by content rather than position.
Rows that cannot be used are skipped and counted, never fatal.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import List, Union

from app.pipeline.base import Connection

logger = logging.getLogger('services.importer')

# Canonical field → accepted header spellings (compared lowercased)
HEADER_ALIASES = {
    'first_name': ('first name', 'firstname', 'first_name'),
    'last_name': ('last name', 'lastname', 'last_name'),
    'url': ('url', 'profile url', 'linkedin url', 'profile_url'),
    'email': ('email address', 'email', 'e-mail'),
    'company': ('company', 'company name', 'organization'),
    'position': ('position', 'title', 'job title'),
    'connected_on': ('connected on', 'connected_on', 'connection date'),
}

REQUIRED_FIELDS = ('first_name', 'last_name', 'company', 'position')

# Header must appear within this many leading lines
MAX_PREAMBLE_LINES = 20


class ImportFormatError(ValueError):
    """The upload has no recognizable connection header."""


@dataclass
class ImportResult:
    connections: List[Connection] = field(default_factory=list)
    skipped: int = 0

    @property
    def total(self) -> int:
        return len(self.connections)


def _decode(data: Union[bytes, str]) -> str:
    if isinstance(data, bytes):
        for encoding in ('utf-8-sig', 'latin-1'):
            try:
                return data.decode(encoding)
            except UnicodeDecodeError:
                continue
    return data.lstrip('\ufeff')


def _map_header(row: List[str]):
    """Return {canonical_field: column_index} if this row looks like the header."""
    normalized = [cell.strip().lower() for cell in row]
    mapping = {}
    for name, aliases in HEADER_ALIASES.items():
        for i, cell in enumerate(normalized):
            if cell in aliases:
                mapping[name] = i
                break
    if all(f in mapping for f in REQUIRED_FIELDS):
        return mapping
    return None


def parse_connections_csv(data: Union[bytes, str]) -> ImportResult:
    """Parse an uploaded contact export. Raises ImportFormatError without a header."""
    reader = csv.reader(io.StringIO(_decode(data)))

    mapping = None
    header_width = 0
    for line_no, row in enumerate(reader):
        if line_no >= MAX_PREAMBLE_LINES:
            break
        mapping = _map_header(row)
        if mapping:
            header_width = len(row)
            break
    if not mapping:
        raise ImportFormatError(
            "Could not find a header with First Name, Last Name, Company and Position columns"
        )

    result = ImportResult()
    for row in reader:
        if not any(cell.strip() for cell in row):
            continue
        if len(row) > header_width:
            result.skipped += 1
            continue
        values = {
            name: (row[i].strip() if i < len(row) else '')
            for name, i in mapping.items()
        }
        if not values.get('first_name') and not values.get('last_name'):
            result.skipped += 1
            continue
        result.connections.append(Connection.from_dict(values))

    logger.info("Imported %d connections (%d rows skipped)", result.total, result.skipped)
    return result


def connections_from_json(items) -> ImportResult:
    """Build connections from an already-parsed JSON list, applying the same row rules."""
    if not isinstance(items, list):
        raise ImportFormatError("connections must be a list")
    result = ImportResult()
    for item in items:
        if not isinstance(item, dict):
            result.skipped += 1
            continue
        conn = Connection.from_dict(item)
        if not conn.first_name and not conn.last_name:
            result.skipped += 1
            continue
        result.connections.append(conn)
    return result
