"""
Run state machine — the single authority on what phase a ranking run is in.

    pending → phase1_running → phase1_complete ─┬─→ phase2_running ⇄ paused
                                                │          ↓
                                                │   phase2_complete
                                                │          ↓
                                                └────→ completed

failed is reachable from pending and every running state. completed and
failed are terminal. Every status write goes through apply_transition().
"""
from datetime import datetime, timezone


PENDING = 'pending'
PHASE1_RUNNING = 'phase1_running'
PHASE1_COMPLETE = 'phase1_complete'
PHASE2_RUNNING = 'phase2_running'
PAUSED = 'paused'
PHASE2_COMPLETE = 'phase2_complete'
COMPLETED = 'completed'
FAILED = 'failed'

TRANSITIONS = {
    PENDING: {PHASE1_RUNNING, FAILED},
    PHASE1_RUNNING: {PHASE1_COMPLETE, FAILED},
    PHASE1_COMPLETE: {PHASE2_RUNNING, COMPLETED, FAILED},
    PHASE2_RUNNING: {PAUSED, PHASE2_COMPLETE, FAILED},
    PAUSED: {PHASE2_RUNNING, FAILED},
    PHASE2_COMPLETE: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
}

TERMINAL = {COMPLETED, FAILED}

# Which view a client should land on when reopening a run
SCREENS = {
    PENDING: 'phase1',
    PHASE1_RUNNING: 'phase1',
    PHASE1_COMPLETE: 'phase1_review',
    PHASE2_RUNNING: 'phase2',
    PAUSED: 'phase2',
    PHASE2_COMPLETE: 'results',
    COMPLETED: 'results',
    FAILED: 'failed',
}


class InvalidTransition(ValueError):
    """A status change the state machine does not allow."""

    def __init__(self, current, target, reason=''):
        self.current = current
        self.target = target
        message = f"Cannot move run from '{current}' to '{target}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def check_transition(run, target: str, finalizing: bool = False):
    """Raise InvalidTransition unless `run` may move to `target` right now."""
    current = run.status
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

    if target == PHASE1_RUNNING:
        if run.criteria is None:
            raise InvalidTransition(current, target, 'criteria not set')
        if run.protected_keywords is None:
            raise InvalidTransition(current, target, 'protected keywords not set')
        if not run.total_connections or run.total_connections <= 0:
            raise InvalidTransition(current, target, 'no connections to score')

    if target == PHASE2_RUNNING and current == PHASE1_COMPLETE:
        if not run.phase2_total:
            raise InvalidTransition(current, target, 'no gray-zone connections to enrich')

    if target == COMPLETED and not finalizing:
        raise InvalidTransition(current, target, 'runs complete only through finalization')


def apply_transition(run, target: str, finalizing: bool = False, now=None):
    """Validate, then set the new status and its timestamp on `run`."""
    check_transition(run, target, finalizing=finalizing)
    now = now or datetime.now(timezone.utc)
    run.status = target
    if target == PHASE1_COMPLETE:
        run.phase1_completed_at = now
    elif target == PHASE2_COMPLETE:
        run.phase2_completed_at = now
    elif target == COMPLETED:
        run.completed_at = now
    if target != PAUSED:
        run.pause_reason = None
    return run


def screen_for(status: str) -> str:
    return SCREENS.get(status, 'results')


def is_terminal(status: str) -> bool:
    return status in TERMINAL
