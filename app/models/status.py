"""Closed status enums and their transition tables.

Every status column in the pipeline is one of these enums. A status can only
move along the edges listed in its table; ORM validators and the conditional
``transition`` update both consult the same tables.
"""
import enum
import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidStatusTransition


class CampaignStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "active"
    CONTACTED = "contacted"
    FOLLOW_UP = "follow_up"
    CLOSED = "closed"
    EXPIRED = "expired"


class WaitQueueStatus(str, enum.Enum):
    WAITING = "waiting"
    ASSIGNED = "assigned"
    EXPIRED = "expired"


class InquiryStatus(str, enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESPONDED = "responded"
    CLOSED = "closed"


class FollowUpStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CAMPAIGN_TRANSITIONS = {
    CampaignStatus.SCHEDULED: {CampaignStatus.SENDING, CampaignStatus.SENT, CampaignStatus.FAILED},
    CampaignStatus.SENDING: {CampaignStatus.SENT, CampaignStatus.FAILED},
    CampaignStatus.SENT: set(),
    CampaignStatus.FAILED: set(),
}

ASSIGNMENT_TRANSITIONS = {
    AssignmentStatus.ACTIVE: {
        AssignmentStatus.CONTACTED,
        AssignmentStatus.FOLLOW_UP,
        AssignmentStatus.CLOSED,
        AssignmentStatus.EXPIRED,
    },
    AssignmentStatus.CONTACTED: {AssignmentStatus.FOLLOW_UP, AssignmentStatus.CLOSED, AssignmentStatus.EXPIRED},
    AssignmentStatus.FOLLOW_UP: {AssignmentStatus.CONTACTED, AssignmentStatus.CLOSED, AssignmentStatus.EXPIRED},
    AssignmentStatus.CLOSED: set(),
    AssignmentStatus.EXPIRED: set(),
}

WAIT_QUEUE_TRANSITIONS = {
    WaitQueueStatus.WAITING: {WaitQueueStatus.ASSIGNED, WaitQueueStatus.EXPIRED},
    WaitQueueStatus.ASSIGNED: set(),
    WaitQueueStatus.EXPIRED: set(),
}

INQUIRY_TRANSITIONS = {
    InquiryStatus.NEW: {InquiryStatus.IN_PROGRESS, InquiryStatus.CLOSED},
    InquiryStatus.IN_PROGRESS: {InquiryStatus.RESPONDED, InquiryStatus.CLOSED},
    InquiryStatus.RESPONDED: {InquiryStatus.CLOSED},
    InquiryStatus.CLOSED: set(),
}

FOLLOW_UP_TRANSITIONS = {
    FollowUpStatus.PENDING: {FollowUpStatus.COMPLETED, FollowUpStatus.CANCELLED},
    FollowUpStatus.COMPLETED: set(),
    FollowUpStatus.CANCELLED: set(),
}

# Assignments in these states block a new assignment for the same lead
OPEN_ASSIGNMENT_STATUSES = (
    AssignmentStatus.ACTIVE,
    AssignmentStatus.CONTACTED,
    AssignmentStatus.FOLLOW_UP,
)


def check_transition(entity: str, table: dict, current, target):
    """Validate ``current -> target`` against ``table`` and return the target enum.

    A missing current status (new row) accepts any initial state. Re-asserting
    the current state is a no-op.
    """
    enum_cls = type(next(iter(table)))
    target = enum_cls(target)
    if current is None:
        return target
    current = enum_cls(current)
    if current == target or target in table[current]:
        return target
    raise InvalidStatusTransition(entity, current.value, target.value)


def allowed_sources(table: dict, target) -> set:
    """States from which ``target`` can be reached (including ``target`` itself)."""
    return {state for state, nexts in table.items() if target in nexts} | {target}


async def transition(
    db: AsyncSession,
    model,
    row_id: uuid.UUID,
    target,
    **values: Any,
) -> None:
    """Move one row to ``target`` with a conditional UPDATE.

    The WHERE clause only matches rows whose current status may legally move
    to ``target``, so concurrent writers cannot push a row through an invalid
    edge. Raises ``InvalidStatusTransition`` when nothing matched.
    """
    table = model.__transitions__
    target = type(next(iter(table)))(target)
    result = await db.execute(
        update(model)
        .where(model.id == row_id, model.status.in_(allowed_sources(table, target)))
        .values(status=target, **values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        current = await db.scalar(select(model.status).where(model.id == row_id))
        raise InvalidStatusTransition(
            model.__name__, current.value if current is not None else "missing", target.value
        )
