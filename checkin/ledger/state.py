from __future__ import annotations

from enum import Enum

from .errors import InvalidTransitionError


class TicketStatus(str, Enum):
    """Supported states for a ticket's place in line."""

    WAITING = "waiting"
    CURRENT = "current"
    COMPLETED = "completed"


def derive_status(ticket: int, current_serving: int) -> TicketStatus:
    """Compute a ticket's status from the serving pointer."""

    if ticket < current_serving:
        return TicketStatus.COMPLETED
    if ticket == current_serving:
        return TicketStatus.CURRENT
    return TicketStatus.WAITING


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    _TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
        TicketStatus.WAITING: {TicketStatus.CURRENT},
        TicketStatus.CURRENT: {TicketStatus.COMPLETED},
        TicketStatus.COMPLETED: set(),
    }

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        if current == new:
            return True
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise InvalidTransitionError(f"Invalid ticket status transition: {current.value} -> {new.value}")
