"""Consent-gated usage analytics.

Events are stored only while the subject holds an active ``analytics``
consent; without it ``track`` fails closed and nothing is written. Events
belong to the subject's footprint and are exported and erased with it.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ValidationFailed
from src.core.models.bmnl import AnalyticsEvent, AnalyticsEventType
from src.security.consent.models import ConsentType
from src.security.consent.service import ConsentLedger

logger = logging.getLogger(__name__)

MAX_EVENT_DATA_BYTES = 4096


class AnalyticsTracker:
    """Records usage events for subjects who consented to analytics."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._ledger = ConsentLedger(session)

    async def track(
        self,
        subject_id: uuid.UUID,
        event_type: AnalyticsEventType,
        event_data: dict[str, Any] | None = None,
    ) -> AnalyticsEvent:
        """Store one event.

        Raises:
            ConsentRequired: the subject has no active analytics consent.
            ValidationFailed: ``event_data`` is too large to store.
        """
        await self._ledger.require_consent(subject_id, ConsentType.ANALYTICS)

        data = event_data or {}
        if len(json.dumps(data, default=str)) > MAX_EVENT_DATA_BYTES:
            raise ValidationFailed(f"event_data must serialise to at most {MAX_EVENT_DATA_BYTES} bytes")

        event = AnalyticsEvent(subject_id=subject_id, event_type=event_type, event_data=data)
        self._session.add(event)
        await self._session.flush()

        logger.info("Analytics event %s recorded for subject %s", event_type.value, subject_id)
        return event

    async def events_for(self, subject_id: uuid.UUID) -> list[AnalyticsEvent]:
        """All events for a subject, oldest first."""
        result = await self._session.execute(
            select(AnalyticsEvent)
            .where(AnalyticsEvent.subject_id == subject_id)
            .order_by(AnalyticsEvent.created_at.asc())
        )
        return list(result.scalars().all())
