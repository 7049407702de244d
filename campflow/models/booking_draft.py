"""Booking draft model: in-progress checkout selections keyed by browser session."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from campflow.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class BookingDraft(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Guest-entered checkout fields saved between page loads.

    Only data typed or chosen by the guest is stored here; quotes and other
    server-derived values are always re-fetched on resume.
    """

    __tablename__ = "booking_drafts"

    session_key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    campground_id: Mapped[str] = mapped_column(String(64), index=True)
    step: Mapped[str] = mapped_column(String(32), default="dates")
    payload: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<BookingDraft(id={self.id}, session_key={self.session_key!r}, step={self.step!r})>"
