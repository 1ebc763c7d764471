"""
RQ worker entry point — runs Phase 1 scoring, Phase 2 enrichment and
standard qualification jobs from the default queue.

    python worker.py
"""
from rq import Worker

from app import extensions
from app.logging_config import configure_logging


if __name__ == '__main__':
    configure_logging()
    Worker(['default'], connection=extensions.redis_client).work()
