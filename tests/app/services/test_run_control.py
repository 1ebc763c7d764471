"""Tests for app.services.run_control — pause flag and worker lock helpers."""
from unittest.mock import MagicMock

from redis.exceptions import LockError

from app.services.run_control import (
    PauseFlag, clear_run_state, is_worker_active, release_quietly, worker_lock, worker_lock_key,
)


class TestPauseFlag:

    def test_set_clear_check(self):
        redis = MagicMock()
        flag = PauseFlag('run-1', redis)
        flag.set()
        redis.set.assert_called_once_with('ranking:run-1:pause', '1', ex=604800)
        redis.exists.return_value = 1
        assert flag.is_set() is True
        flag.clear()
        redis.delete.assert_called_once_with('ranking:run-1:pause')

    def test_defaults_to_shared_client(self, mock_redis):
        assert PauseFlag('run-1').is_set() is False
        mock_redis.exists.assert_called_once_with('ranking:run-1:pause')


class TestWorkerLock:

    def test_lock_key_and_timeout(self):
        redis = MagicMock()
        worker_lock('run-1', redis)
        redis.lock.assert_called_once_with('ranking:run-1:worker', timeout=300)

    def test_is_worker_active(self):
        redis = MagicMock()
        redis.exists.return_value = 0
        assert is_worker_active('run-1', redis) is False
        redis.exists.return_value = 1
        assert is_worker_active('run-1', redis) is True
        assert worker_lock_key('run-1') == 'ranking:run-1:worker'

    def test_release_quietly_tolerates_expired_lock(self):
        lock = MagicMock()
        lock.release.side_effect = LockError('not owned')
        release_quietly(lock, 'run-1')
        lock.release.assert_called_once()

    def test_clear_run_state(self):
        redis = MagicMock()
        clear_run_state('run-1', redis)
        redis.delete.assert_called_once_with('ranking:run-1:pause', 'ranking:run-1:worker')
