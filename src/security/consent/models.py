"""Consent ledger models.

Each consent event is one immutable row: a grant, or a revocation with
``revoked_at`` set. Current consent for a (subject, type) pair is the most
recently created row. Rows are never updated in place; a fresh grant after
a revocation is a new row.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base


class ConsentType(enum.StrEnum):
    """Consent purposes a subject can grant or revoke."""

    ASSESSMENT = "assessment"
    ANALYTICS = "analytics"
    PUBLIC_RADAR = "public_radar"
    DATA_PROCESSING = "data_processing"


class ConsentRecord(Base):
    """One append-only consent event.

    ``subject_id`` is a participant id for the assessment flow or a user id
    for account-level consent; it carries no foreign key so both flows share
    one ledger. The integer id gives a total order for events created within
    the same clock tick.
    """

    __tablename__ = "bmnl_consent_records"
    __table_args__ = (
        Index("ix_bmnl_consent_records_subject_type", "subject_id", "consent_type"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    consent_type: Mapped[ConsentType] = mapped_column(
        Enum(ConsentType, values_callable=lambda e: [x.value for x in e], native_enum=False, length=32),
        nullable=False,
    )
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    consent_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default="v1")
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True, default=None)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ConsentRecord(subject={self.subject_id}, type='{self.consent_type}', granted={self.granted})>"
