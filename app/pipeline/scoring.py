"""
Deterministic scorer + tier classifier.

Every connection gets three component scores from local rules only:
  title    (-40..40)  seniority / target title match, disqualifiers negative
  company  (-5..10)   target industry, B2B signal, education penalty
  recency  (0..10)    how recently the connection was made

The clamped sum (0..60) is mapped to one of five tiers; a protected-keyword
hit overrides everything with the `protected` tier. Only `borderline` (the
gray zone) is eligible for paid enrichment, which can add up to 40 points.

All weights and thresholds come from scoring_config.yaml. No I/O beyond
loading that file once.
"""
import logging
import os
import re
from datetime import datetime
from functools import lru_cache
from typing import Dict, List, Optional

import yaml

from app.config import TIERS, PROTECTED_TIER
from app.pipeline.base import (
    Connection, QualificationCriteria, ProtectedKeywords, ScoreBreakdown,
)

logger = logging.getLogger('pipeline.scoring')


# ── Scoring config (YAML with hardcoded fallback) ────────────────────────────

_scoring_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'title': {
            'exclude_title_score': -40,
            'target_title_score': 40,
            'groups': [
                {'score': -40, 'patterns': [r'\bstudent\b', r'\bintern\b', r'\bseeking\b',
                                            r'\bretired\b', r'\bunemployed\b', r'\blooking for']},
                {'score': -20, 'patterns': [r'\brecruiter\b', r'\btalent acquisition\b',
                                            r'\bhuman resources\b', r'\bhr\b']},
                {'score': 40, 'patterns': [r'\bfounder\b', r'\bceo\b', r'\bowner\b',
                                           r'\bco-?founder\b', r'\bchief executive\b']},
                {'score': 35, 'patterns': [r'\bcmo\b', r'\bcro\b', r'\bcto\b', r'\bcoo\b',
                                           r'\bcfo\b', r'\bchief\s+\w+\s+officer\b']},
                {'score': 30, 'patterns': [r'\bvp\b', r'\bvice president\b', r'\bsvp\b',
                                           r'\bevp\b', r'\bhead of\b']},
                {'score': 25, 'patterns': [r'\bdirector\b']},
                {'score': 20, 'patterns': [r'\bmanager\b', r'\blead\b', r'\bprincipal\b']},
                {'score': 15, 'patterns': [r'\bsenior\b', r'\bsr\.']},
                {'score': 10, 'patterns': [r'\bconsultant\b', r'\badvisor\b',
                                           r'\bstrategist\b', r'\bpartner\b']},
                {'score': 5, 'patterns': [r'\bspecialist\b', r'\bcoordinator\b',
                                          r'\bassociate\b', r'\banalyst\b']},
            ],
        },
        'company': {
            'min_length': 4,
            'excluded': -5,
            'university': -5,
            'self_employed': 0,
            'industry_match': 10,
            'b2b_signal': 8,
            'named_company': 5,
            'university_pattern': r'\b(university|college|school|institute|academia|student)\b',
            'self_employed_pattern': r'\b(self[- ]employed|freelanc\w*|independent|solopreneur)\b',
            'b2b_pattern': (r'\b(software|tech|platform|ai|saas|cloud|digital|analytics|automation'
                            r'|data|cyber|fintech|martech|adtech|devops|infra)\b'),
        },
        'recency': [
            {'max_months': 6, 'score': 10},
            {'max_months': 12, 'score': 8},
            {'max_months': 24, 'score': 5},
            {'max_months': 36, 'score': 3},
            {'max_months': 60, 'score': 1},
        ],
        'deterministic': {'min_total': 0, 'max_total': 60},
        'ai': {'geography_max': 15, 'industry_max': 15, 'seniority_max': 10},
        'tiers': {
            'likely_remove': 10,
            'borderline': 30,
            'strong_keep': 50,
            'definite_keep': 70,
        },
    }


def load_scoring_config():
    """Load scoring config from YAML, with in-memory cache and hardcoded fallback."""
    global _scoring_config
    if _scoring_config is not None:
        return _scoring_config

    config_path = os.path.join(os.path.dirname(__file__), 'scoring_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _scoring_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _scoring_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _scoring_config = _default_config()

    validate_thresholds(_scoring_config['tiers'])
    return _scoring_config


def reset_cache():
    """Reset the in-memory cache (useful for testing)."""
    global _scoring_config
    _scoring_config = None
    _compile.cache_clear()


@lru_cache(maxsize=256)
def _compile(pattern: str):
    return re.compile(pattern, re.IGNORECASE)


# ── Tier classifier ──────────────────────────────────────────────────────────

def validate_thresholds(thresholds: Dict[str, float]) -> List[tuple]:
    """
    Check tier lower bounds and return them as ascending (bound, tier) bands.

    Bounds must exist for every tier above definite_remove and be strictly
    increasing, so the bands cover the whole score axis with no overlap.
    """
    bands = []
    previous = None
    for tier in TIERS[1:]:
        if tier not in thresholds:
            raise ValueError(f"Missing tier threshold for '{tier}'")
        bound = thresholds[tier]
        if previous is not None and bound <= previous:
            raise ValueError(
                f"Tier thresholds must be strictly increasing: '{tier}'={bound} <= {previous}"
            )
        bands.append((bound, tier))
        previous = bound
    return bands


def get_tier_thresholds() -> Dict[str, float]:
    return dict(load_scoring_config()['tiers'])


def assign_tier(total: float, is_protected: bool, thresholds: Optional[Dict[str, float]] = None) -> str:
    """Map a total score + protection flag to exactly one of the six tiers."""
    if is_protected:
        return PROTECTED_TIER
    bands = validate_thresholds(thresholds if thresholds is not None else get_tier_thresholds())
    tier = TIERS[0]
    for bound, name in bands:
        if total >= bound:
            tier = name
    return tier


def combine_ai_scores(geography, industry, seniority) -> int:
    """Clamp each enrichment sub-score to its cap and sum them (0..40 by default)."""
    caps = load_scoring_config()['ai']
    return (
        _clamp(_to_int(geography), 0, caps['geography_max'])
        + _clamp(_to_int(industry), 0, caps['industry_max'])
        + _clamp(_to_int(seniority), 0, caps['seniority_max'])
    )


def max_ai_score() -> int:
    caps = load_scoring_config()['ai']
    return caps['geography_max'] + caps['industry_max'] + caps['seniority_max']


# ── Component scores ─────────────────────────────────────────────────────────

def compute_title_score(position: str, criteria: QualificationCriteria) -> int:
    if not position or not position.strip():
        return 0
    cfg = load_scoring_config()['title']
    lowered = position.lower()

    groups = cfg['groups']
    negatives = [g for g in groups if g['score'] < 0]
    positives = [g for g in groups if g['score'] >= 0]

    for group in negatives:
        if _any_match(group['patterns'], position):
            return group['score']
    for excluded in criteria.exclude_titles:
        if excluded.lower() in lowered:
            return cfg['exclude_title_score']
    for target in criteria.target_titles:
        if target.lower() in lowered:
            return cfg['target_title_score']
    for group in positives:
        if _any_match(group['patterns'], position):
            return group['score']
    return 0


def compute_company_score(company: str, criteria: QualificationCriteria) -> int:
    cfg = load_scoring_config()['company']
    if not company or len(company.strip()) < cfg['min_length']:
        return 0
    lowered = company.lower()

    for excluded in criteria.exclude_companies:
        if excluded.lower() in lowered:
            return cfg['excluded']
    if _compile(cfg['university_pattern']).search(company):
        return cfg['university']
    if _compile(cfg['self_employed_pattern']).search(company):
        return cfg['self_employed']
    for industry in criteria.target_industries:
        if industry.lower() in lowered:
            return cfg['industry_match']
    if _compile(cfg['b2b_pattern']).search(company):
        return cfg['b2b_signal']
    return cfg['named_company']


_DATE_FORMATS = ('%d %b %Y', '%d %B %Y', '%Y-%m-%d', '%m/%d/%Y', '%b %d, %Y', '%B %d, %Y')


def parse_connection_date(value: str) -> Optional[datetime]:
    """Parse the connection date formats seen in contact exports. None if unparseable."""
    if not value or not value.strip():
        return None
    value = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def compute_recency_score(connected_on: str, now: Optional[datetime] = None) -> int:
    connected = parse_connection_date(connected_on)
    if connected is None:
        return 0
    now = now or datetime.now()
    months_ago = (now - connected).total_seconds() / (86400 * 30)
    for band in load_scoring_config()['recency']:
        if months_ago < band['max_months']:
            return band['score']
    return 0


def detect_protected(position: str, company: str, keywords: ProtectedKeywords):
    """Return (is_protected, reason) for the first keyword found in title + company."""
    combined = f'{position or ""} {company or ""}'.lower()
    for label, words in keywords.categories():
        for word in words:
            if word and word.lower() in combined:
                return True, f'{label}: "{word}"'
    return False, None


# ── Main entry point ─────────────────────────────────────────────────────────

def score_connection(
    connection: Connection,
    criteria: QualificationCriteria,
    keywords: ProtectedKeywords,
    now: Optional[datetime] = None,
) -> ScoreBreakdown:
    """Pure deterministic score for one connection."""
    is_protected, reason = detect_protected(connection.position, connection.company, keywords)

    title = compute_title_score(connection.position, criteria)
    company = compute_company_score(connection.company, criteria)
    recency = compute_recency_score(connection.connected_on, now=now)

    bounds = load_scoring_config()['deterministic']
    total = _clamp(title + company + recency, bounds['min_total'], bounds['max_total'])

    return ScoreBreakdown(
        title_score=title,
        company_score=company,
        recency_score=recency,
        total=total,
        is_protected=is_protected,
        protected_reason=reason,
    )


# ── Helpers ──────────────────────────────────────────────────────────────────

def _any_match(patterns, text: str) -> bool:
    return any(_compile(p).search(text) for p in patterns)


def _clamp(value, low, high):
    return max(low, min(high, value))


def _to_int(value) -> int:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return 0
