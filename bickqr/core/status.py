"""
Bick lifecycle.

    processing ──> live ──> removed
        │  ^                  ^
        v  │ (retry)          │
       failed ────────────────┘

The pipeline drives processing -> live and processing -> failed; a retry
re-opens failed -> processing. Removal is a moderation action.
"""

import enum


class BickStatus(str, enum.Enum):
    PROCESSING = "processing"
    LIVE = "live"
    FAILED = "failed"
    REMOVED = "removed"


ALLOWED_TRANSITIONS = {
    BickStatus.PROCESSING: {BickStatus.LIVE, BickStatus.FAILED, BickStatus.REMOVED},
    BickStatus.FAILED: {BickStatus.PROCESSING, BickStatus.REMOVED},
    BickStatus.LIVE: {BickStatus.REMOVED},
    BickStatus.REMOVED: set(),
}

TERMINAL_STATUSES = {BickStatus.REMOVED}


def can_transition(current, target) -> bool:
    current = BickStatus(current)
    target = BickStatus(target)
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]
