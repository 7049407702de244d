"""SQLAlchemy models for Campflow.

All models are imported here so that ``Base.metadata`` knows about every
table. If you add a new model, import it in this file.
"""

from campflow.models.booking_draft import BookingDraft

__all__ = [
    "BookingDraft",
]
