"""Audit log subscriber — persists every SystemEvent to the audit_log table.

Registered as a global subscriber (receives ALL events). Failures are
logged and never propagate to the event system.
"""

from __future__ import annotations

import logging

from quotepay.db.engine import async_session_factory
from quotepay.models.audit import AuditLog
from quotepay.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table."""
    try:
        async with async_session_factory() as db:
            db.add(
                AuditLog(
                    event_type=event.event_type.value,
                    quote_id=event.quote_id,
                    actor_id=event.actor_id,
                    actor_role=event.actor_role,
                    data=event.model_dump(mode="json", include={"data"})["data"],
                )
            )
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (quote=%s)",
            event.event_type.value,
            event.quote_id,
        )
