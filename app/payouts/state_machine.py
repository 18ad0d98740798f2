
# app/payouts/state_machine.py

class InvalidTransition(Exception):
    def __init__(self, old: str, new: str):
        super().__init__(f"Illegal payout transition: {old} -> {new}")
        self.old = old
        self.new = new


PENDING_APPROVAL = "pending_approval"
APPROVED = "approved"
REJECTED = "rejected"
SCHEDULED = "scheduled"
PROCESSING = "processing"
COMPLETED = "completed"
PAYMENT_FAILED = "payment_failed"
CANCELLED = "cancelled"


ALLOWED = {
    PENDING_APPROVAL: {APPROVED, REJECTED, CANCELLED},
    APPROVED: {SCHEDULED, PROCESSING, PAYMENT_FAILED, CANCELLED},
    SCHEDULED: {PROCESSING, PAYMENT_FAILED, CANCELLED},
    PROCESSING: {COMPLETED, PAYMENT_FAILED},
    PAYMENT_FAILED: {APPROVED},  # explicit retry only
    COMPLETED: set(),
    REJECTED: set(),
    CANCELLED: set(),
}

ALL_STATUSES = frozenset(ALLOWED)
TERMINAL = frozenset(s for s, targets in ALLOWED.items() if not targets)

# statuses from which a payment failure may be recorded
PAYMENT_STATES = frozenset({APPROVED, SCHEDULED, PROCESSING})

# a member with a payout in one of these is "already selected"
OPEN_STATUSES = frozenset({PENDING_APPROVAL, APPROVED, SCHEDULED, PROCESSING, PAYMENT_FAILED})

# payouts that draw on program revenue
FUNDED_STATUSES = OPEN_STATUSES | {COMPLETED}

# a selected winner can be released before any money moves
CANCELLABLE = frozenset({PENDING_APPROVAL, APPROVED, SCHEDULED})


def can_transition(old: str, new: str) -> bool:
    return new in ALLOWED.get(old, set())


def assert_transition(old: str, new: str) -> None:
    if not can_transition(old, new):
        raise InvalidTransition(old, new)


def is_terminal(status: str) -> bool:
    return status in TERMINAL
