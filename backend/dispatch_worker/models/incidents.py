from geoalchemy2 import Geography
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from ..db import Base


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    # "{group_id}-{ts}-{start_ts}" of the newest call that survived reconciliation
    external_id = Column(Text, unique=True, index=True, nullable=False)

    call_type = Column(Text, nullable=False)
    address = Column(Text, nullable=False)
    # NULL when no geocoder returned an in-area hit
    location = Column(Geography(geometry_type="POINT", srid=4326, spatial_index=False))

    units = Column(ARRAY(Text), server_default="{}")
    channels = Column(ARRAY(Text), server_default="{}")

    # Dispatch timestamp
    timestamp = Column(DateTime(timezone=True), index=True, nullable=False)

    audio_url = Column(Text)
    raw_transcript = Column(Text)
    estimated_resolution_minutes = Column(Integer)
    incident_type = Column(Text, nullable=False, index=True)
    group_id = Column(Text, nullable=False)
    duration = Column(Integer)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "incident_type IN ('fire', 'medical', 'unknown')",
            name="ck_incidents_incident_type",
        ),
        Index("idx_incidents_location", location, postgresql_using="gist"),
    )
