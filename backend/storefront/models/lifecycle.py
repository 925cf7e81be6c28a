"""
Status vocabulary shared by abandoned checkouts and payment-failure records.

Status is monotonic: pending -> recovered -> completed, or pending -> completed.
Once completed, a record is terminal.
"""

PENDING = "pending"
RECOVERED = "recovered"
COMPLETED = "completed"

OPEN_STATUSES = (PENDING, RECOVERED)

_TRANSITIONS = {
    PENDING: {RECOVERED, COMPLETED},
    RECOVERED: {RECOVERED, COMPLETED},
    COMPLETED: set(),
}


def can_transition(src: str, dst: str) -> bool:
    return dst in _TRANSITIONS.get(src, set())
