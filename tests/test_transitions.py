import pytest

from marketplace.core.errors import (
    CompletionRequiresCodeError,
    ForbiddenTransitionError,
    InvalidTransitionError,
    TerminalStateError,
)
from marketplace.models.booking import BookingStatus, TERMINAL_STATUSES
from marketplace.services.transitions import (
    TRANSITIONS,
    Capacity,
    check_transition,
    resolve_capacity,
)

S = BookingStatus


@pytest.mark.parametrize("current,target,capacity", [
    (S.PENDING, S.CONFIRMED, Capacity.PROVIDER),
    (S.PENDING, S.CONFIRMED, Capacity.ADMIN),
    (S.PENDING, S.REJECTED, Capacity.PROVIDER),
    (S.PENDING, S.CANCELLED, Capacity.CUSTOMER),
    (S.PENDING, S.EXPIRED, Capacity.SYSTEM),
    (S.CONFIRMED, S.IN_PROGRESS, Capacity.PROVIDER),
    (S.CONFIRMED, S.CANCELLED, Capacity.CUSTOMER),
    (S.CONFIRMED, S.CANCELLED, Capacity.PROVIDER),
    (S.IN_PROGRESS, S.COMPLETED, Capacity.SYSTEM),
])
def test_allowed_edges(current, target, capacity):
    check_transition(current.value, target.value, capacity)


def test_customer_cannot_confirm():
    with pytest.raises(ForbiddenTransitionError):
        check_transition("PENDING", "CONFIRMED", Capacity.CUSTOMER)


def test_provider_cannot_cancel_pending():
    with pytest.raises(ForbiddenTransitionError):
        check_transition("PENDING", "CANCELLED", Capacity.PROVIDER)


def test_only_system_expires():
    for capacity in (Capacity.CUSTOMER, Capacity.PROVIDER, Capacity.ADMIN):
        with pytest.raises(ForbiddenTransitionError):
            check_transition("PENDING", "EXPIRED", capacity)


@pytest.mark.parametrize("capacity", [Capacity.CUSTOMER, Capacity.PROVIDER, Capacity.ADMIN])
def test_completion_needs_code_flow(capacity):
    with pytest.raises(CompletionRequiresCodeError):
        check_transition("IN_PROGRESS", "COMPLETED", capacity)


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
def test_terminal_states_are_final(terminal):
    for target in S:
        with pytest.raises(TerminalStateError):
            check_transition(terminal, target.value, Capacity.ADMIN)
    assert not any(src.value == terminal for src, _ in TRANSITIONS)


def test_cannot_skip_states():
    with pytest.raises(InvalidTransitionError):
        check_transition("PENDING", "IN_PROGRESS", Capacity.PROVIDER)


def test_same_state_reports_already():
    with pytest.raises(InvalidTransitionError, match="already CONFIRMED"):
        check_transition("CONFIRMED", "CONFIRMED", Capacity.PROVIDER)


def test_no_standing_is_forbidden():
    with pytest.raises(ForbiddenTransitionError):
        check_transition("PENDING", "CANCELLED", None)


def test_in_progress_cannot_be_cancelled():
    with pytest.raises(InvalidTransitionError):
        check_transition("IN_PROGRESS", "CANCELLED", Capacity.CUSTOMER)


def test_resolve_capacity():
    assert resolve_capacity("c1", "CUSTOMER", "c1", "p1") == Capacity.CUSTOMER
    assert resolve_capacity("p1", "PROVIDER", "c1", "p1") == Capacity.PROVIDER
    assert resolve_capacity("a1", "ADMIN", "c1", "p1") == Capacity.ADMIN
    # a customer who is not on the booking, or a provider of another booking
    assert resolve_capacity("c2", "CUSTOMER", "c1", "p1") is None
    assert resolve_capacity("p2", "PROVIDER", "c1", "p1") is None
    # a provider account that booked someone else's service is that booking's customer
    assert resolve_capacity("c1", "PROVIDER", "c1", "p1") == Capacity.CUSTOMER
    # provider standing still needs the provider role
    assert resolve_capacity("p1", "CUSTOMER", "c1", "p1") is None
