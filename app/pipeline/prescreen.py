"""
Standard-mode PRE-FILTER — quick rule-based elimination, no scoring.

Drops connections whose title or company hits an exclude list, or who were
connected before the criteria's cut-off date. Everything left goes to the
low-cost classifier.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from app.pipeline.base import Connection, QualificationCriteria
from app.pipeline.scoring import parse_connection_date

logger = logging.getLogger('pipeline.prescreen')


@dataclass
class PrefilterResult:
    kept: List[Connection] = field(default_factory=list)
    removed: List[Tuple[Connection, str]] = field(default_factory=list)

    @property
    def reasons(self) -> Dict[str, int]:
        return dict(Counter(reason.split(':')[0] for _, reason in self.removed))


def elimination_reason(conn: Connection, criteria: QualificationCriteria, cutoff=None) -> Optional[str]:
    """Why this connection is dropped, or None if it passes."""
    position = conn.position.lower()
    for title in criteria.exclude_titles:
        if title.lower() in position:
            return f'excluded_title: {title}'

    company = conn.company.lower()
    for name in criteria.exclude_companies:
        if name.lower() in company:
            return f'excluded_company: {name}'

    if cutoff is not None:
        connected = parse_connection_date(conn.connected_on)
        # Unknown dates are kept; only a known-too-old connection is dropped
        if connected is not None and connected < cutoff:
            return f'connected_before: {criteria.connected_after}'
    return None


def pre_filter(connections: List[Connection], criteria: QualificationCriteria) -> PrefilterResult:
    cutoff = parse_connection_date(criteria.connected_after) if criteria.connected_after else None
    if criteria.connected_after and cutoff is None:
        raise ValueError(f"Unrecognized connected_after date: {criteria.connected_after}")

    result = PrefilterResult()
    for conn in connections:
        reason = elimination_reason(conn, criteria, cutoff)
        if reason:
            result.removed.append((conn, reason))
        else:
            result.kept.append(conn)

    logger.info("Pre-filter: %d in, %d kept, %d removed %s",
                len(connections), len(result.kept), len(result.removed), result.reasons)
    return result
