"""Data shapes shared by the worker stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Classification = Literal["fire", "medical", "unknown"]

MISSING_FIELD = "?"


class RawCall(BaseModel):
    """One Broadcastify call event, as delivered by the live feed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    group_id: str = Field(alias="groupId")
    ts: int
    start_ts: int
    url: str
    descr: str = ""
    duration: float = 0

    @property
    def external_id(self) -> str:
        return f"{self.group_id}-{self.ts}-{self.start_ts}"

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.ts, tz=timezone.utc)


class FeedPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    server_time: int = Field(alias="serverTime")
    last_pos: int = Field(alias="lastPos")
    calls: List[RawCall] = Field(default_factory=list)


class ParsedCall(BaseModel):
    """Structured fields extracted from one transcript."""

    call_type: Optional[str] = None
    units: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    address: Optional[str] = None
    address_variants: List[str] = Field(default_factory=list)
    classification: Classification = "unknown"
    estimated_resolution_minutes: int = 60
    raw_transcript: str = ""


@dataclass(frozen=True)
class GeoPoint:
    longitude: float
    latitude: float

    def to_wkt(self) -> str:
        return f"POINT({self.longitude} {self.latitude})"


@dataclass
class CandidateIncident:
    """
    In-memory incident record for one cycle.

    Mutated only by the reconciler's merge pass. ``coordinates`` is None when
    geocoding found nothing; a GeoPoint(0, 0) is a real (if unlikely) point.
    """

    external_id: str
    timestamp: Optional[datetime]
    call_type: Optional[str] = None
    address: Optional[str] = None
    coordinates: Optional[GeoPoint] = None
    units: List[str] = field(default_factory=list)
    channels: List[str] = field(default_factory=list)
    audio_url: str = ""
    raw_transcript: str = ""
    estimated_resolution_minutes: int = 60
    classification: Classification = "unknown"
    group_id: str = ""
    duration_seconds: float = 0

    @classmethod
    def from_call(
        cls,
        call: RawCall,
        parsed: ParsedCall,
        coordinates: Optional[GeoPoint],
        transcript: str,
    ) -> "CandidateIncident":
        return cls(
            external_id=call.external_id,
            timestamp=call.timestamp,
            call_type=parsed.call_type,
            address=parsed.address,
            coordinates=coordinates,
            units=list(parsed.units),
            channels=list(parsed.channels),
            audio_url=call.url,
            raw_transcript=transcript,
            estimated_resolution_minutes=parsed.estimated_resolution_minutes,
            classification=parsed.classification,
            group_id=call.group_id,
            duration_seconds=call.duration,
        )
