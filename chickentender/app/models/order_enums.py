"""
Order-related enumerations.
"""

import enum


class OrderState(str, enum.Enum):
    """Order lifecycle state."""
    OPEN = "OPEN"  # Accepting participants
    CLOSING = "CLOSING"  # Closing soon, still accepting participants
    CLOSED = "CLOSED"  # No more changes, waiting to be settled
    ARCHIVED = "ARCHIVED"  # Settled (logged) with a purchaser
    CANCELLED = "CANCELLED"  # Abandoned, no coin effects


# States in which participants may join or leave
JOINABLE_STATES = (OrderState.OPEN, OrderState.CLOSING)

# States from which an order may be cancelled
CANCELLABLE_STATES = (OrderState.OPEN, OrderState.CLOSING, OrderState.CLOSED)

# Listing order: closing soon first, then open, closed, archived, cancelled
STATE_SORT_RANK = {
    OrderState.CLOSING: 0,
    OrderState.OPEN: 1,
    OrderState.CLOSED: 2,
    OrderState.ARCHIVED: 3,
    OrderState.CANCELLED: 4,
}
