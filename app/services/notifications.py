"""
Notifications — Slack webhook integration for ranking run events.

Notification failure never blocks the pipeline.
"""
import logging
import requests

from app.config import SLACK_WEBHOOK_URL

logger = logging.getLogger('services.notifications')


def _post(blocks, run_id, kind):
    try:
        requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Run %s %s notification sent", run_id[:8], kind)
    except Exception:
        logger.error("Failed to send %s notification for run %s", kind, run_id[:8], exc_info=True)


def notify_run_complete(run):
    """Post a completed run's tier breakdown to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    tiers = run.tier_counts
    removal = tiers.get('likely_remove', 0) + tiers.get('definite_remove', 0)
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Ranking Completed — {run.name}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Connections:* {run.total_connections or 0}"},
                {"type": "mrkdwn", "text": f"*Protected:* {tiers.get('protected', 0)}"},
                {"type": "mrkdwn", "text": f"*Keep:* {tiers.get('definite_keep', 0) + tiers.get('strong_keep', 0)}"},
                {"type": "mrkdwn", "text": f"*Borderline:* {tiers.get('borderline', 0)}"},
                {"type": "mrkdwn", "text": f"*Removal candidates:* {removal}"},
                {"type": "mrkdwn", "text": f"*Enriched:* {run.phase2_processed or 0}/{run.phase2_total or 0}"},
            ],
        },
    ]
    if run.summary:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"_{run.summary}_"}})
    if run.estimated_cost:
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"Enrichment cost: ~${run.estimated_cost:.2f}"}],
        })
    _post(blocks, run.id, 'completion')


def notify_run_failed(run):
    """Post a run failure alert to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"Ranking FAILED — {run.name}"},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Scored:* {run.phase1_processed or 0}/{run.total_connections or 0}"},
                {"type": "mrkdwn", "text": f"*Enriched:* {run.phase2_processed or 0}/{run.phase2_total or 0}"},
            ],
        },
    ]
    if run.error:
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Error:* ```{run.error[:500]}```"},
        })
    _post(blocks, run.id, 'failure')
