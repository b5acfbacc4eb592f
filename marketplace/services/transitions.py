"""Booking state machine.

The whole of transition legality lives in TRANSITIONS: a mapping from
(current status, target status) to the actor capacities allowed to perform it.
Nothing here touches the database.
"""
import enum

from marketplace.core.errors import (
    CompletionRequiresCodeError,
    ForbiddenTransitionError,
    InvalidTransitionError,
    TerminalStateError,
)
from marketplace.models.booking import BookingStatus, TERMINAL_STATUSES


class Capacity(str, enum.Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"  # sweeper expiry and code-verified completion


class ActorRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


S = BookingStatus
C = Capacity

TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], frozenset[Capacity]] = {
    (S.PENDING, S.CONFIRMED): frozenset({C.PROVIDER, C.ADMIN}),
    (S.PENDING, S.REJECTED): frozenset({C.PROVIDER, C.ADMIN}),
    (S.PENDING, S.CANCELLED): frozenset({C.CUSTOMER, C.ADMIN}),
    (S.PENDING, S.EXPIRED): frozenset({C.SYSTEM}),
    (S.CONFIRMED, S.IN_PROGRESS): frozenset({C.PROVIDER, C.ADMIN}),
    (S.CONFIRMED, S.CANCELLED): frozenset({C.CUSTOMER, C.PROVIDER, C.ADMIN}),
    (S.IN_PROGRESS, S.COMPLETED): frozenset({C.SYSTEM}),
}


def resolve_capacity(actor_id: str, actor_role: str, customer_id: str, provider_user_id: str) -> Capacity | None:
    """Work out in which capacity an actor acts on a booking, or None if they have no standing."""
    if actor_role == ActorRole.ADMIN.value:
        return Capacity.ADMIN
    if actor_role == ActorRole.PROVIDER.value and actor_id == provider_user_id:
        return Capacity.PROVIDER
    # Customer standing follows the booking, whatever role the account holds
    if actor_id == customer_id:
        return Capacity.CUSTOMER
    return None


def check_transition(current: str, target: str, capacity: Capacity | None) -> None:
    """Raise unless `capacity` may move a booking from `current` to `target`.

    Checks run in a fixed order and the first failure wins: terminal source,
    completion outside the code flow, missing standing, unknown edge, wrong
    capacity for a known edge.
    """
    current = BookingStatus(current)
    target = BookingStatus(target)

    if current.value in TERMINAL_STATUSES:
        raise TerminalStateError(current.value, target.value)
    if target == S.COMPLETED and capacity != C.SYSTEM:
        raise CompletionRequiresCodeError(current.value)
    if capacity is None:
        raise ForbiddenTransitionError("You are not a party to this booking")

    allowed = TRANSITIONS.get((current, target))
    if allowed is None:
        if current == target:
            raise InvalidTransitionError(current.value, target.value, f"Booking is already {current.value}")
        raise InvalidTransitionError(current.value, target.value)
    if capacity not in allowed:
        raise ForbiddenTransitionError(
            f"A {capacity.value} cannot move a booking from {current.value} to {target.value}"
        )
