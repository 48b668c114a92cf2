"""Allowed status transitions for payments and subscriptions.

Payment flow:
    pending -> requires_action -> authorized -> captured
    captured -> partially_refunded -> refunded
    any pre-capture state -> failed | canceled

Subscription flow:
    incomplete -> trialing | active
    trialing -> active | past_due
    active <-> past_due, active <-> paused
    active | trialing | past_due | incomplete -> canceled
    past_due | active | incomplete -> expired

Re-applying the current status is always allowed (no-op). Anything else
not listed is rejected, which is how out-of-order webhook deliveries are
detected.
"""

from paygate.models.enums import PaymentStatus, SubscriptionStatus
from paygate.models.errors import LedgerConflict

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {
            PaymentStatus.REQUIRES_ACTION,
            PaymentStatus.AUTHORIZED,
            PaymentStatus.CAPTURED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELED,
        }
    ),
    PaymentStatus.REQUIRES_ACTION: frozenset(
        {
            PaymentStatus.PENDING,
            PaymentStatus.AUTHORIZED,
            PaymentStatus.CAPTURED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELED,
        }
    ),
    PaymentStatus.AUTHORIZED: frozenset(
        {PaymentStatus.CAPTURED, PaymentStatus.FAILED, PaymentStatus.CANCELED}
    ),
    PaymentStatus.CAPTURED: frozenset(
        {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELED: frozenset(),
}

SUBSCRIPTION_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.INCOMPLETE: frozenset(
        {
            SubscriptionStatus.TRIALING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.EXPIRED,
        }
    ),
    SubscriptionStatus.TRIALING: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.CANCELED,
        }
    ),
    SubscriptionStatus.ACTIVE: frozenset(
        {
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.PAUSED,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.EXPIRED,
        }
    ),
    SubscriptionStatus.PAST_DUE: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.CANCELED,
            SubscriptionStatus.EXPIRED,
        }
    ),
    SubscriptionStatus.PAUSED: frozenset({SubscriptionStatus.ACTIVE}),
    SubscriptionStatus.CANCELED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
}

REFUNDABLE_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.CAPTURED, PaymentStatus.PARTIALLY_REFUNDED}
)


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return current == target or target in PAYMENT_TRANSITIONS[current]


def can_transition_subscription(
    current: SubscriptionStatus, target: SubscriptionStatus
) -> bool:
    return current == target or target in SUBSCRIPTION_TRANSITIONS[current]


def ensure_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    """Raise LedgerConflict unless current -> target is allowed."""
    if not can_transition_payment(current, target):
        raise LedgerConflict(
            f"Payment cannot move from {current.value} to {target.value}",
            current_status=current.value,
            target_status=target.value,
        )


def ensure_subscription_transition(
    current: SubscriptionStatus, target: SubscriptionStatus
) -> None:
    """Raise LedgerConflict unless current -> target is allowed."""
    if not can_transition_subscription(current, target):
        raise LedgerConflict(
            f"Subscription cannot move from {current.value} to {target.value}",
            current_status=current.value,
            target_status=target.value,
        )


def is_terminal_payment(status: PaymentStatus) -> bool:
    return not PAYMENT_TRANSITIONS[status]


def is_terminal_subscription(status: SubscriptionStatus) -> bool:
    return not SUBSCRIPTION_TRANSITIONS[status]
