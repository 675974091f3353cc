"""Payment status of a service record and the moves allowed between them.

    pending ──webhook──▶ confirmed
       │                    ▲
       └──init failure──▶ failed ──late charge──┘

Confirmed never changes again. QR regeneration rewrites codes on a
confirmed record without touching its status.
"""

from __future__ import annotations

from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_MOVES: frozenset[tuple[str, str]] = frozenset(
    {
        (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value),
        (BookingStatus.PENDING.value, BookingStatus.FAILED.value),
        (BookingStatus.FAILED.value, BookingStatus.CONFIRMED.value),
    }
)


class InvalidTransitionError(Exception):
    """A record was asked to move to a status its current one cannot reach."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Booking cannot move from '{from_status}' to '{to_status}'")


class BookingStateMachine:
    @staticmethod
    def can_transition(from_status: str, to_status: str) -> bool:
        return (from_status, to_status) in _MOVES

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @staticmethod
    def can_issue_qr(status: str) -> bool:
        """Codes exist only once payment is confirmed."""
        return status == BookingStatus.CONFIRMED.value

    @staticmethod
    def next_statuses(status: str) -> set[str]:
        return {target for source, target in _MOVES if source == status}
