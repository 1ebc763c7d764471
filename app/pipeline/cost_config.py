"""
Cost configuration loader — per-call rates, per-run budgets, and guardrails.

Follows the same pattern as scoring_config.yaml: YAML file with in-memory
cache and hardcoded fallback if the file is missing.
"""
import logging
import os
from typing import Optional

import yaml

logger = logging.getLogger('pipeline.cost')


_cost_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'rates': {
            'enrichment_call': 0.0012,
            'classifier_batch': 0.002,
        },
        'defaults': {'max_budget': 25.00, 'warning_threshold': 0.80},
        'guardrails': {
            'confirmation_threshold': 5.00,
            'absolute_max': 200.00,
        },
    }


def load_cost_config() -> dict:
    """Load cost config from YAML, with in-memory cache and hardcoded fallback."""
    global _cost_config
    if _cost_config is not None:
        return _cost_config

    config_path = os.path.join(os.path.dirname(__file__), 'cost_config.yaml')
    try:
        with open(config_path, 'r') as f:
            _cost_config = yaml.safe_load(f)
        logger.info("Config loaded from YAML (version=%s)", _cost_config.get('version', '?'))
    except Exception as e:
        logger.warning("YAML config not found (%s), using defaults", e)
        _cost_config = _default_config()

    return _cost_config


def get_rate(kind: str) -> float:
    """Get the USD cost of one external call of the given kind."""
    cfg = load_cost_config()
    return cfg.get('rates', {}).get(kind, 0.0)


def get_enrichment_cost_per_call() -> float:
    return get_rate('enrichment_call')


def get_default_budget() -> float:
    cfg = load_cost_config()
    return cfg.get('defaults', {}).get('max_budget', 25.00)


def get_warning_threshold() -> float:
    """Get the warning threshold ratio (0-1) of a run's budget."""
    cfg = load_cost_config()
    return cfg.get('defaults', {}).get('warning_threshold', 0.80)


def get_confirmation_threshold() -> float:
    """Get the Phase 2 estimate above which the caller should confirm before starting."""
    cfg = load_cost_config()
    return cfg.get('guardrails', {}).get('confirmation_threshold', 5.00)


def get_absolute_max() -> float:
    """Hard ceiling on budget regardless of user input."""
    cfg = load_cost_config()
    return cfg.get('guardrails', {}).get('absolute_max', 200.00)


def cost_for_calls(calls: int) -> float:
    """Accumulated enrichment cost is always calls × per-call rate, never a running sum."""
    return round(calls * get_enrichment_cost_per_call(), 6)


def estimate_phase2_cost(phase2_total: int) -> float:
    return cost_for_calls(phase2_total)


def resolve_budget(requested: Optional[float]) -> float:
    """Apply the default when no budget is given and cap at the absolute max."""
    if requested is None:
        return get_default_budget()
    budget = float(requested)
    if budget <= 0:
        raise ValueError("max_budget must be positive")
    return min(budget, get_absolute_max())


def reset_cache():
    """Reset the in-memory cache (useful for testing)."""
    global _cost_config
    _cost_config = None
