"""Attendee account model."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from convention_fulfillment.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """A payer. Resolved or created on every booking by email and phone."""

    __tablename__ = "app_user"

    user_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("email", "phone_number", name="app_user_email_phone_key"),
    )
