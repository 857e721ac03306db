from sqlalchemy import Column, DateTime, JSON, String, Text, func
from .base import Base


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(String(36), primary_key=True)
    actor_id = Column(String(36), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    entity = Column(String(32), nullable=False)
    entity_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=False)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now(), index=True)
