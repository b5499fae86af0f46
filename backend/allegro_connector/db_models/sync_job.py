from sqlalchemy import Column, String, DateTime, Integer, Text
from sqlalchemy.sql import func
from allegro_connector.database import Base
import uuid


class SyncJob(Base):
    """One finished import run. Written once when the run ends."""

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(100), nullable=False, index=True)

    job_type = Column(String(50), nullable=False)  # import_all, import_approved
    job_status = Column(String(50), nullable=False, index=True)  # completed, failed
    sync_source = Column(String(20))

    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    records_synced = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    error_message = Column(Text)
    sync_params = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
