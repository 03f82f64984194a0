# Order status constants and the transition rules shared by every writer.

# Payment link issued, funds not yet confirmed by the provider.
PENDING = "PENDING"

# Funds delivered to the beneficiary.
SUCCESS = "SUCCESS"

# Provider or beneficiary bank rejected the transfer; refund path.
FAILED = "FAILED"

# Compensating cancellation after stage-2 confirm.
CANCELLED = "CANCELLED"

# Held for AML review. Non-terminal, always anomalous.
AML_HOLD = "AML_HOLD"

ALL_STATUSES = (PENDING, SUCCESS, FAILED, CANCELLED, AML_HOLD)
TERMINAL_STATUSES = frozenset({SUCCESS, FAILED, CANCELLED})
ANOMALOUS_STATUSES = frozenset({AML_HOLD})

# Aliases seen on provider webhooks
_STATUS_ALIASES = {
    "COMPLETED": SUCCESS,
    "SUCCEEDED": SUCCESS,
    "PAID": SUCCESS,
    "PROCESSING": PENDING,
    "IN_PROGRESS": PENDING,
    "CANCELED": CANCELLED,
    "REJECTED": FAILED,
    "ERROR": FAILED,
}


def normalize_status(value) -> str:
    """Upper-case and de-alias a status string. Unknown values pass through upper-cased."""
    s = str(value or "").strip().upper()
    return _STATUS_ALIASES.get(s, s)


def is_known(status: str) -> bool:
    return status in ALL_STATUSES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def is_anomalous(status: str) -> bool:
    return status in ANOMALOUS_STATUSES


def allows_transition(current: str, target: str) -> bool:
    """
    A terminal status never regresses to a non-terminal one.
    Terminal -> other terminal is allowed (e.g. a late reversal); callers order
    those by event timestamp.
    """
    if current == target:
        return False
    if is_terminal(current) and not is_terminal(target):
        return False
    return True
