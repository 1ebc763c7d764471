"""Tests for app.services.notifications — Slack webhook posts."""
from types import SimpleNamespace

from unittest.mock import patch

from app.services.notifications import notify_run_complete, notify_run_failed

WEBHOOK = 'https://hooks.slack.example/T000/B000'


def _run(**kw):
    values = dict(
        id='abcdef12-3456', name='Q3 cleanup', total_connections=100, phase1_processed=100,
        phase2_total=20, phase2_processed=20, estimated_cost=0.024, summary='All good.', error=None,
        tier_counts={'protected': 5, 'definite_keep': 10, 'strong_keep': 20, 'borderline': 15,
                     'likely_remove': 30, 'definite_remove': 20},
    )
    values.update(kw)
    return SimpleNamespace(**values)


class TestNotifications:

    def test_no_webhook_no_post(self):
        with patch('app.services.notifications.requests.post') as post:
            notify_run_complete(_run())
            notify_run_failed(_run())
        post.assert_not_called()

    def test_completion_blocks(self):
        with patch('app.services.notifications.SLACK_WEBHOOK_URL', WEBHOOK), \
                patch('app.services.notifications.requests.post') as post:
            notify_run_complete(_run())
        url = post.call_args[0][0]
        blocks = post.call_args[1]['json']['blocks']
        assert url == WEBHOOK
        assert blocks[0]['text']['text'] == 'Ranking Completed — Q3 cleanup'
        fields = [f['text'] for f in blocks[1]['fields']]
        assert '*Removal candidates:* 50' in fields
        assert '*Keep:* 30' in fields
        assert blocks[2]['text']['text'] == '_All good._'
        assert 'Enrichment cost: ~$0.02' in blocks[3]['elements'][0]['text']

    def test_failure_includes_error(self):
        with patch('app.services.notifications.SLACK_WEBHOOK_URL', WEBHOOK), \
                patch('app.services.notifications.requests.post') as post:
            notify_run_failed(_run(error='Phase 1 failed: disk full'))
        blocks = post.call_args[1]['json']['blocks']
        assert 'FAILED' in blocks[0]['text']['text']
        assert 'disk full' in blocks[-1]['text']['text']

    def test_post_errors_swallowed(self):
        with patch('app.services.notifications.SLACK_WEBHOOK_URL', WEBHOOK), \
                patch('app.services.notifications.requests.post', side_effect=ConnectionError('no route')):
            notify_run_complete(_run())
