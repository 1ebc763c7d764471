"""
Anthropic helpers — low-cost binary qualification of connection batches.

The classifier sees a numbered list of connections plus the ICP criteria and
returns one verdict per line. Failures raise; the standard qualifier turns a
raised batch into "retry recommended" results.
"""
import json
import logging
from typing import Any, Dict, List

from app import extensions
from app.config import CLASSIFIER_MODEL
from app.pipeline.base import QualificationCriteria
from app.services.circuit_breaker import get_breaker
from app.services.openai_client import strip_code_fences

logger = logging.getLogger('services.anthropic')

SYSTEM_PROMPT = (
    "You are a lead qualification assistant. Given ICP criteria and a batch of "
    "LinkedIn connections, classify each as qualified or not_qualified."
)


def _call_anthropic(prompt: str, max_tokens: int = 4096) -> str:
    """Call Claude Haiku via the Anthropic API, through the circuit breaker."""
    client = extensions.anthropic_client
    if client is None:
        raise RuntimeError("ANTHROPIC_API_KEY not set")
    cb = get_breaker('anthropic')
    response = cb.call(
        client.messages.create,
        model=CLASSIFIER_MODEL,
        max_tokens=max_tokens,
        system=SYSTEM_PROMPT,
        messages=[{"role": "user", "content": prompt}],
    )
    return response.content[0].text


def build_classifier_prompt(records: List[Dict[str, Any]], criteria: QualificationCriteria) -> str:
    listing = '\n'.join(
        f"{i}. {r.get('name', '')} | Company: {r.get('company', '')} | Position: {r.get('title', '')}"
        for i, r in enumerate(records)
    )
    criteria_lines = []
    if criteria.target_titles:
        criteria_lines.append(f"Target titles: {', '.join(criteria.target_titles)}")
    if criteria.target_industries:
        criteria_lines.append(f"Target industries/company types: {', '.join(criteria.target_industries)}")
    if criteria.free_text_description:
        criteria_lines.append(f"Additional context: {criteria.free_text_description}")

    return f"""## ICP Criteria
{chr(10).join(criteria_lines)}

## Connections
{listing}

## Instructions
For each connection, determine if they match the ICP criteria based on their title and company. Use your knowledge of well-known companies to inform your decisions. For unknown companies, make your best judgment based on the company name and the person's title.

Return a JSON array with one object per connection, in the same order:
[
  {{ "index": 0, "qualification": "qualified", "confidence": "high", "reasoning": "Brief reason" }}
]

qualification: "qualified" or "not_qualified"
confidence: "high" (clear match/non-match), "medium" (likely but uncertain), "low" (guessing)
reasoning: One sentence explaining why.

Return ONLY valid JSON, no markdown or explanation."""


def classify_connections(records: List[Dict[str, Any]], criteria: QualificationCriteria) -> List[Dict[str, Any]]:
    """
    Classify a batch. Returns a list aligned by index to `records`.

    Entries carrying an explicit "index" are placed at that position; slots
    the model skipped are None. Raises on API or JSON errors.
    """
    raw = _call_anthropic(build_classifier_prompt(records, criteria))
    parsed = json.loads(strip_code_fences(raw))
    if not isinstance(parsed, list):
        raise ValueError("Classifier did not return a JSON array")

    aligned: List[Any] = [None] * len(records)
    for position, entry in enumerate(parsed):
        index = entry.get('index', position) if isinstance(entry, dict) else position
        # Models sometimes quote the index ("1")
        if isinstance(index, bool):
            continue
        try:
            index = int(index)
        except (TypeError, ValueError):
            continue
        if 0 <= index < len(records):
            aligned[index] = entry
    logger.info("Classified batch of %d (%d entries returned)", len(records), len(parsed))
    return aligned
