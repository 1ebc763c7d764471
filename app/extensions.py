"""
Shared client instances — Redis, OpenAI, Anthropic.

Clients are built at import time but never connect until first use, so
importing this module is always safe (even when env vars are missing during tests).
"""
import logging
import redis

from app.config import REDIS_URL, OPENAI_API_KEY, ANTHROPIC_API_KEY

logger = logging.getLogger('app.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── OpenAI ────────────────────────────────────────────────────────────────────
openai_client = None
if OPENAI_API_KEY:
    try:
        from openai import OpenAI
        openai_client = OpenAI(api_key=OPENAI_API_KEY)
        logger.info("OpenAI client initialized successfully")
    except Exception as e:
        logger.error("Error initializing OpenAI client: %s", e)
else:
    logger.warning("OPENAI_API_KEY not set — enrichment unavailable")

# ── Anthropic ────────────────────────────────────────────────────────────────
anthropic_client = None
if ANTHROPIC_API_KEY:
    try:
        import anthropic
        anthropic_client = anthropic.Anthropic(api_key=ANTHROPIC_API_KEY)
        logger.info("Anthropic client initialized successfully")
    except Exception as e:
        logger.error("Error initializing Anthropic client: %s", e)
else:
    logger.warning("ANTHROPIC_API_KEY not set — standard qualifier unavailable")

# ── RQ (lazy, so importing never touches Redis) ──────────────────────────────
_queue = None


def get_queue():
    global _queue
    if _queue is None:
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue
