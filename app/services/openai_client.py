"""
OpenAI helpers — web-search-grounded enrichment of gray-zone connections.

One chat completion per record against a search-enabled model. The model
returns three sub-scores (geography, industry, seniority) which are clamped
and summed into the AI score; cited URLs are kept as grounding data.
"""
import json
import logging
import re
from typing import Any, Dict, List

from app import extensions
from app.config import ENRICHMENT_MODEL
from app.pipeline.base import EnrichmentResult, QualificationCriteria
from app.pipeline.scoring import combine_ai_scores
from app.services.circuit_breaker import CircuitOpenError, get_breaker

logger = logging.getLogger('services.openai')

_FENCE_RE = re.compile(r'```(?:json)?\s*', re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences models sometimes wrap JSON in."""
    return _FENCE_RE.sub('', text or '').strip()


def _chat_completion(**kwargs):
    """Route chat completion through the OpenAI circuit breaker."""
    client = extensions.openai_client
    if client is None:
        raise RuntimeError("OPENAI_API_KEY not set")
    cb = get_breaker('openai')
    return cb.call(client.chat.completions.create, **kwargs)


def format_criteria(criteria: QualificationCriteria) -> str:
    lines = []
    if criteria.target_titles:
        lines.append(f"Target titles: {', '.join(criteria.target_titles)}")
    if criteria.target_industries:
        lines.append(f"Target industries: {', '.join(criteria.target_industries)}")
    if criteria.free_text_description:
        lines.append(f"Context: {criteria.free_text_description}")
    return '\n'.join(lines)


def build_enrichment_prompt(record: Dict[str, Any], criteria: QualificationCriteria) -> str:
    return f"""Search the internet for this person and score them for ICP qualification.

Name: {record.get('name') or 'Unknown'}
Company: {record.get('company') or 'Unknown'}
Position: {record.get('title') or 'Unknown'}
Deterministic Score: {record.get('deterministic_score', 0)}/60

ICP:
{format_criteria(criteria)}

Score on these dimensions:
1. Geography (0-15): Western world (US/UK/EU/Canada/Australia/NZ) = 15, likely Western = 10, uncertain = 5, non-Western = 0
2. Industry relevance (0-15): Strong ICP match = 15, moderate = 10, weak = 5, none = 0
3. Seniority confirmation (0-10): Confirmed decision-maker = 10, likely = 7, some signal = 3, none = 0

Return ONLY valid JSON:
{{"geography_score":N,"industry_score":N,"seniority_score":N,"geography":"...","industry":"...","company_size":"...","reasoning":"..."}}"""


def _source_urls(message) -> List[str]:
    urls = []
    for annotation in getattr(message, 'annotations', None) or []:
        citation = getattr(annotation, 'url_citation', None)
        url = getattr(citation, 'url', None) if citation else None
        if url and url not in urls:
            urls.append(url)
    return urls


def parse_enrichment_response(record_id, text: str, sources: List[str] = None) -> EnrichmentResult:
    """Turn the model's reply into an EnrichmentResult. Unparseable replies become errors."""
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
    except ValueError:
        return EnrichmentResult(
            id=record_id,
            reasoning=f"Failed to parse enrichment response: {cleaned[:100]}",
            sources=sources or [],
            error='JSON parse failure',
        )

    return EnrichmentResult(
        id=record_id,
        ai_score=combine_ai_scores(
            parsed.get('geography_score'),
            parsed.get('industry_score'),
            parsed.get('seniority_score'),
        ),
        reasoning=str(parsed.get('reasoning') or ''),
        geography=str(parsed.get('geography') or ''),
        industry=str(parsed.get('industry') or ''),
        company_size=str(parsed.get('company_size') or ''),
        sources=sources or [],
    )


def enrich_connection(record: Dict[str, Any], criteria: QualificationCriteria) -> EnrichmentResult:
    """Enrich a single record. Raises on transport errors."""
    response = _chat_completion(
        model=ENRICHMENT_MODEL,
        web_search_options={},
        messages=[{"role": "user", "content": build_enrichment_prompt(record, criteria)}],
        max_tokens=512,
    )
    message = response.choices[0].message
    return parse_enrichment_response(record['id'], message.content, _source_urls(message))


def enrich_connections(records: List[Dict[str, Any]], criteria: QualificationCriteria) -> List[EnrichmentResult]:
    """
    Enrich records one call at a time.

    Each record gets back either a scored result or {id, error}; one bad
    record never affects the others. CircuitOpenError propagates so the
    caller can stop instead of failing every remaining record.
    """
    results = []
    for record in records:
        try:
            results.append(enrich_connection(record, criteria))
        except CircuitOpenError:
            raise
        except Exception as e:
            logger.warning("Enrichment failed for record %s: %s", record.get('id'), e)
            results.append(EnrichmentResult(id=record['id'], error=str(e)[:500]))
    return results
