from sqlalchemy import Column, DateTime, Text, func
from ..db import Base


class WorkerState(Base):
    __tablename__ = "worker_state"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
