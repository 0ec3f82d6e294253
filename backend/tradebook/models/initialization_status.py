from sqlalchemy import Column, Boolean, DateTime
from tradebook.core.database import Base
from tradebook.models.base import IdMixin, TimestampMixin


class InitializationStatus(Base, IdMixin, TimestampMixin):
    """
    Singleton flag: has the historical holdings backfill run?

    Once is_initialized is true it is never reset.
    """
    __tablename__ = "initialization_status"

    is_initialized = Column(Boolean, nullable=False, default=False)
    initialized_at = Column(DateTime, nullable=True)
