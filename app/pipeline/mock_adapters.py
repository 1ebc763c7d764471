"""
Mock external services — realistic fake enrichment and classification.

Activated with MOCK_PIPELINE=1 env var. Both paid services are replaced with
canned responses so a full upload → Phase 1 → Phase 2 → export flow can run
locally without API keys. Results are seeded from the record itself, so the
same connection always gets the same verdict.
"""
import logging
import random
import time
from typing import Any, Dict, List

from app.pipeline.base import EnrichmentResult, QualificationCriteria
from app.pipeline.scoring import combine_ai_scores

logger = logging.getLogger('pipeline.mock')


MOCK_GEOGRAPHIES = [
    ('United States', 15), ('United Kingdom', 15), ('Canada', 15), ('Germany', 15),
    ('Australia', 15), ('Likely US-based', 10), ('Unclear', 5), ('India', 0), ('Brazil', 0),
]
MOCK_COMPANY_SIZES = ['1-10', '11-50', '51-200', '201-1000', '1000+']
MOCK_SOURCES = [
    'https://www.linkedin.com/in/{slug}',
    'https://www.crunchbase.com/organization/{company}',
    'https://{company}.com/about',
]


def _simulate_delay(min_s=0.05, max_s=0.2):
    """Small delay to simulate API latency."""
    time.sleep(random.uniform(min_s, max_s))


def _rng_for(*parts) -> random.Random:
    return random.Random('|'.join(str(p) for p in parts))


def _slug(text: str) -> str:
    return ''.join(c for c in (text or 'unknown').lower() if c.isalnum()) or 'unknown'


def mock_enrich_connections(records: List[Dict[str, Any]], criteria: QualificationCriteria) -> List[EnrichmentResult]:
    """Fake web-grounded enrichment. Roughly 1 in 25 records comes back as an error."""
    results = []
    for record in records:
        _simulate_delay()
        rng = _rng_for(record.get('id'), record.get('name'), record.get('company'))
        if rng.random() < 0.04:
            results.append(EnrichmentResult(id=record['id'], error='Mock enrichment timeout'))
            continue

        geography, geo_score = rng.choice(MOCK_GEOGRAPHIES)
        industry_match = any(
            ind.lower() in (record.get('company') or '').lower() for ind in criteria.target_industries
        )
        industry_score = 15 if industry_match else rng.choice([0, 5, 10])
        seniority_score = rng.choice([0, 3, 7, 10])
        industry = criteria.target_industries[0] if industry_match else rng.choice(
            ['Software', 'Consulting', 'Retail', 'Healthcare', 'Education']
        )
        results.append(EnrichmentResult(
            id=record['id'],
            ai_score=combine_ai_scores(geo_score, industry_score, seniority_score),
            reasoning=(
                f"[MOCK] {record.get('name') or 'Unknown'} appears to be based in {geography} "
                f"working in {industry.lower()}."
            ),
            geography=geography,
            industry=industry,
            company_size=rng.choice(MOCK_COMPANY_SIZES),
            sources=[
                url.format(slug=_slug(record.get('name')), company=_slug(record.get('company')))
                for url in MOCK_SOURCES[:rng.randint(1, 3)]
            ],
        ))
    logger.info("[MOCK] Enriched %d records", len(records))
    return results


def mock_classify_connections(records: List[Dict[str, Any]], criteria: QualificationCriteria) -> List[Dict[str, Any]]:
    """Fake classifier: qualified when a target title or industry appears in the record."""
    _simulate_delay()
    titles = [t.lower() for t in criteria.target_titles]
    industries = [i.lower() for i in criteria.target_industries]
    verdicts = []
    for index, record in enumerate(records):
        title = (record.get('title') or '').lower()
        company = (record.get('company') or '').lower()
        title_hit = any(t in title for t in titles)
        industry_hit = any(i in company for i in industries)
        if title_hit and industry_hit:
            verdict = ('qualified', 'high', 'Title and company both match the ICP.')
        elif title_hit or industry_hit:
            verdict = ('qualified', 'medium', 'Partial ICP match on title or company.')
        else:
            verdict = ('not_qualified', 'high' if title else 'low', 'No overlap with target titles or industries.')
        verdicts.append({
            'index': index,
            'qualification': verdict[0],
            'confidence': verdict[1],
            'reasoning': f'[MOCK] {verdict[2]}',
        })
    logger.info("[MOCK] Classified batch of %d", len(records))
    return verdicts
