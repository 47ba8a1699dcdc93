"""Consent ledger service.

Records consent events and answers "is consent currently active" for
gated processing. Every write is an insert; the ledger never updates
or deletes rows outside of participant erasure.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConsentRequired
from src.security.consent.models import ConsentRecord, ConsentType

logger = logging.getLogger(__name__)

CURRENT_CONSENT_VERSION = "v1"

DEFAULT_CONSENT_TEXT: dict[ConsentType, str] = {
    ConsentType.ASSESSMENT: "Cultural onboarding assessment consent",
    ConsentType.ANALYTICS: "Anonymous usage analytics",
    ConsentType.PUBLIC_RADAR: "Show my radar profile publicly",
    ConsentType.DATA_PROCESSING: "Processing of my answers to produce a radar profile",
}


class ConsentLedger:
    """Append-only consent ledger over ``bmnl_consent_records``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_consent(
        self,
        subject_id: uuid.UUID,
        consent_type: ConsentType,
        granted: bool,
        *,
        consent_text: str | None = None,
        version: str = CURRENT_CONSENT_VERSION,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentRecord:
        """Append a grant or revocation event.

        A revocation is stored with ``revoked_at`` set at creation. Earlier
        rows are left untouched.
        """
        now = datetime.now(UTC)
        record = ConsentRecord(
            subject_id=subject_id,
            consent_type=consent_type,
            granted=granted,
            granted_at=now,
            revoked_at=None if granted else now,
            consent_text=consent_text or DEFAULT_CONSENT_TEXT.get(consent_type),
            version=version,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        self._session.add(record)
        await self._session.flush()

        logger.info(
            "Consent %s: subject=%s, type=%s",
            "granted" if granted else "revoked",
            subject_id,
            consent_type,
        )
        return record

    async def latest(self, subject_id: uuid.UUID, consent_type: ConsentType) -> ConsentRecord | None:
        """Most recent event for the pair, granted or not."""
        stmt = (
            select(ConsentRecord)
            .where(
                ConsentRecord.subject_id == subject_id,
                ConsentRecord.consent_type == consent_type,
            )
            .order_by(ConsentRecord.created_at.desc(), ConsentRecord.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def current_consent(self, subject_id: uuid.UUID, consent_type: ConsentType) -> ConsentRecord | None:
        """Return the active consent record, or None if absent or revoked."""
        record = await self.latest(subject_id, consent_type)
        if record is None or not record.granted or record.revoked_at is not None:
            return None
        return record

    async def require_consent(self, subject_id: uuid.UUID, consent_type: ConsentType) -> ConsentRecord:
        """Fail closed unless the subject currently consents to ``consent_type``."""
        record = await self.current_consent(subject_id, consent_type)
        if record is None:
            logger.info("Consent check failed: subject=%s, type=%s", subject_id, consent_type)
            raise ConsentRequired(f"Active '{consent_type.value}' consent is required")
        return record

    async def history(self, subject_id: uuid.UUID) -> list[ConsentRecord]:
        """All events for a subject, oldest first."""
        stmt = (
            select(ConsentRecord)
            .where(ConsentRecord.subject_id == subject_id)
            .order_by(ConsentRecord.created_at.asc(), ConsentRecord.id.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def current_status(self, subject_id: uuid.UUID) -> dict[ConsentType, ConsentRecord]:
        """Latest event per consent type (types never recorded are omitted)."""
        latest: dict[ConsentType, ConsentRecord] = {}
        for record in await self.history(subject_id):
            latest[record.consent_type] = record
        return latest
