"""Total order of message delivery statuses.

Status updates may arrive late or out of order (a DELIVERED ack after the
READ receipt), so every transition is a comparison against this table and a
message only ever moves forward. Nothing here touches the database.
"""

from __future__ import annotations

from duet_stage.models.message import DeliveryStatus

STATUS_ORDER: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.SENDING,
    DeliveryStatus.SENT,
    DeliveryStatus.DELIVERED,
    DeliveryStatus.READ,
)

_RANK = {status: rank for rank, status in enumerate(STATUS_ORDER)}


def status_rank(status: DeliveryStatus | str) -> int:
    """Return the position of ``status`` in the delivery order."""
    return _RANK[DeliveryStatus(status)]


def is_advance(current: DeliveryStatus | str, new: DeliveryStatus | str) -> bool:
    """Return True when moving from ``current`` to ``new`` is a forward step."""
    return status_rank(new) > status_rank(current)


def statuses_below(status: DeliveryStatus | str) -> tuple[DeliveryStatus, ...]:
    """Return every status strictly lower than ``status``.

    Used as the guard of a conditional UPDATE, so the comparison happens in
    the same statement as the write.
    """
    return STATUS_ORDER[: status_rank(status)]


def max_status(*statuses: DeliveryStatus | str) -> DeliveryStatus:
    """Return the most advanced of ``statuses``."""
    return max((DeliveryStatus(s) for s in statuses), key=status_rank)


def apply_status(current: DeliveryStatus | str, new: DeliveryStatus | str) -> DeliveryStatus:
    """Return the status a message ends up in after receiving ``new``."""
    return max_status(current, new)
