"""Order and payment lifecycle transition tables.

The tables are the single authority on which status changes are legal. Webhook
reconciliation, staff updates and cancellations all consult them, so an event
that arrives out of order can never force an illegal transition.
"""

from ordering.models.enums import OrderStatus, PaymentStatus
from ordering.models.errors import InvalidTransitionError

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Customers may only back out before the kitchen has accepted the order
CUSTOMER_CANCELLABLE: frozenset[OrderStatus] = frozenset(
    {OrderStatus.CREATED, OrderStatus.PAYMENT_PENDING, OrderStatus.PAID}
)


def is_valid_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, frozenset())


def get_valid_next_statuses(status: OrderStatus) -> list[OrderStatus]:
    """Statuses reachable in one step, in lifecycle order."""
    allowed = ORDER_TRANSITIONS.get(status, frozenset())
    return [s for s in OrderStatus if s in allowed]


def is_terminal_status(status: OrderStatus) -> bool:
    return not ORDER_TRANSITIONS.get(status)


def can_customer_cancel(status: OrderStatus) -> bool:
    return status in CUSTOMER_CANCELLABLE


def can_staff_cancel(status: OrderStatus) -> bool:
    return is_valid_transition(status, OrderStatus.CANCELLED)


def assert_transition(from_status: OrderStatus, to_status: OrderStatus) -> None:
    """Raise InvalidTransitionError unless from_status -> to_status is in the table."""
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)


# Payments move forward only; a refund is final
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.COMPLETED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def is_valid_payment_transition(from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
    return to_status in PAYMENT_TRANSITIONS.get(from_status, frozenset())
