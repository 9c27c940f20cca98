"""Domain event notifications.

Services publish ``CampEvent``s to an injected ``Notifier``. Delivery runs
as a background task after the triggering write has been committed, so a
failing notifier is logged and never affects the state change.
"""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import select

from smilestars.config import get_settings
from smilestars.database import get_db_context
from smilestars.models import (
    Camp,
    Entity,
    EXCLUSIVE_ROLES,
    Membership,
    ParentStudentLink,
    User,
    as_utc,
    utcnow,
)
from smilestars.services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)
settings = get_settings()


class CampEventType(str, Enum):
    """Events emitted by the camp and consent workflows."""

    CAMP_SCHEDULED = "CAMP_SCHEDULED"
    CONSENT_REQUESTED = "CONSENT_REQUESTED"


@dataclass(frozen=True)
class CampEvent:
    """An outbound domain event carrying a snapshot of the camp."""

    type: CampEventType
    camp: dict[str, Any]
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


def camp_snapshot(camp: Camp) -> dict[str, Any]:
    """Serialize the full camp record for an event."""
    return {
        "id": camp.id,
        "school_entity_id": camp.school_entity_id,
        "name": camp.name,
        "description": camp.description,
        "start_date": as_utc(camp.start_date).isoformat(),
        "end_date": as_utc(camp.end_date).isoformat(),
        "expected_students": camp.expected_students,
        "status": camp.status,
        "assigned_dentist_id": camp.assigned_dentist_id,
        "created_by": camp.created_by,
    }


class Notifier(Protocol):
    """Consumer of camp events."""

    async def notify(self, event: CampEvent) -> None:
        ...


class NullNotifier:
    """Notifier that only logs events."""

    async def notify(self, event: CampEvent) -> None:
        logger.debug(f"[Notification] {event.type.value} for camp {event.camp.get('id')}")


class EmailNotifier:
    """Notifier that emails school contacts and linked parents."""

    def __init__(self, email_service: EmailService | None = None):
        self.email_service = email_service or get_email_service()

    async def notify(self, event: CampEvent) -> None:
        logger.info(f"[Notification] Processing {event.type.value} for camp {event.camp['id']}")
        if event.type == CampEventType.CAMP_SCHEDULED:
            await self._camp_scheduled(event)
        elif event.type == CampEventType.CONSENT_REQUESTED:
            await self._consent_requested(event)

    async def _camp_scheduled(self, event: CampEvent) -> None:
        camp = event.camp
        async with get_db_context() as db:
            school = await db.get(Entity, camp["school_entity_id"])
            if not school:
                return

            result = await db.execute(
                select(User.email)
                .join(Membership, Membership.user_id == User.id)
                .where(
                    Membership.entity_id == school.id,
                    Membership.role.in_([r.value for r in EXCLUSIVE_ROLES]),
                )
            )
            recipients = set(result.scalars().all())

        contact_email = school.get_metadata("contact_email")
        if contact_email:
            recipients.add(contact_email)
        if not recipients:
            logger.info(f"No contacts to notify for school {school.id}")
            return

        await self.email_service.send_camp_scheduled(
            to=sorted(recipients),
            camp_name=camp["name"],
            school_name=school.name,
            start_date=camp["start_date"][:10],
            end_date=camp["end_date"][:10],
        )

    async def _consent_requested(self, event: CampEvent) -> None:
        student_id = event.payload["student_entity_id"]
        async with get_db_context() as db:
            student = await db.get(Entity, student_id)
            result = await db.execute(
                select(User.email)
                .join(ParentStudentLink, ParentStudentLink.parent_user_id == User.id)
                .where(ParentStudentLink.student_entity_id == student_id)
            )
            recipients = sorted(set(result.scalars().all()))

        if not student or not recipients:
            return

        await self.email_service.send_consent_request(
            to=recipients,
            student_name=student.name,
            camp_name=event.camp["name"],
            start_date=event.camp["start_date"][:10],
        )


# Strong references to running background tasks
_background_tasks: set[asyncio.Task] = set()


async def _run_safely(coro: Coroutine[Any, Any, Any], description: str) -> None:
    try:
        await coro
    except Exception:
        logger.exception(f"Background {description} failed")


def fire_and_forget(coro: Coroutine[Any, Any, Any], description: str) -> asyncio.Task:
    """Run a coroutine in the background, logging any failure."""
    task = asyncio.create_task(_run_safely(coro, description))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def publish(notifier: Notifier, event: CampEvent) -> asyncio.Task:
    """Deliver an event to a notifier without waiting for it."""
    return fire_and_forget(notifier.notify(event), f"{event.type.value} notification")


async def wait_for_background_tasks() -> None:
    """Wait for in-flight background tasks to finish."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


# Singleton instance
_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Get the configured notifier."""
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier() if settings.email_enabled else NullNotifier()
    return _notifier
