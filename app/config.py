"""
Centralized configuration — env vars, pipeline constants, statuses and tiers.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── OpenAI (web-grounded enrichment) ─────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
ENRICHMENT_MODEL = os.getenv('ENRICHMENT_MODEL', 'gpt-4o-mini-search-preview')

# ── Anthropic (low-cost classifier) ──────────────────────────────────────────
ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')
CLASSIFIER_MODEL = os.getenv('CLASSIFIER_MODEL', 'claude-haiku-4-5-20251001')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Auth ─────────────────────────────────────────────────────────────────────
DASHBOARD_PASSWORD = os.getenv('DASHBOARD_PASSWORD')
DEFAULT_OWNER_ID = 'default'

# ── Pipeline constants ───────────────────────────────────────────────────────
PHASE1_CHUNK_SIZE = 500
PHASE2_BATCH_SIZE = 10
QUALIFY_BATCH_SIZE = 50
RUN_HISTORY_LIMIT = 20
EXPORT_PAGE_SIZE = 1000
TIER_SAMPLE_SIZE = 3

PHASE1_JOB_TIMEOUT = 1800
PHASE2_JOB_TIMEOUT = 14400
QUALIFY_JOB_TIMEOUT = 3600

# Worker lock TTL, re-extended after every record
WORKER_LOCK_TIMEOUT = 300

# ── Run status values ─────────────────────────────────────────────────────────
RUN_STATUSES = [
    'pending',
    'phase1_running',
    'phase1_complete',
    'phase2_running',
    'paused',
    'phase2_complete',
    'completed',
    'failed',
]

# ── Tiers, lowest to highest ─────────────────────────────────────────────────
TIERS = [
    'definite_remove',
    'likely_remove',
    'borderline',
    'strong_keep',
    'definite_keep',
]
PROTECTED_TIER = 'protected'
GRAY_ZONE_TIER = 'borderline'
REMOVAL_TIERS = ('likely_remove', 'definite_remove')
ALL_TIERS = [PROTECTED_TIER] + TIERS

ENRICHMENT_STATUSES = ['skipped', 'pending', 'processing', 'done', 'failed']
OVERRIDES = ('keep', 'remove')

EXPORT_VIEWS = ('removal', 'keep', 'all')
