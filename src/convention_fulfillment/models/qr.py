"""QR code regeneration audit trail."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from convention_fulfillment.models.base import Base, TimestampMixin


class QRCodeHistory(Base, TimestampMixin):
    """One row per admin-triggered QR regeneration."""

    __tablename__ = "qr_code_history"

    history_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    service_type: Mapped[str] = mapped_column(String(16), nullable=False)
    service_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    old_qr_code: Mapped[str] = mapped_column(Text, nullable=False)
    new_qr_code: Mapped[str] = mapped_column(Text, nullable=False)
    regenerated_by: Mapped[str] = mapped_column(String(128), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
