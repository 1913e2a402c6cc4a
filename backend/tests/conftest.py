from datetime import datetime, timedelta, timezone

import pytest

from dispatch_worker.schemas import CandidateIncident, GeoPoint

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_candidate(
    external_id: str,
    seconds: float = 0,
    call_type="Structure Fire",
    address="123 Main St",
    units=None,
    channels=None,
    coordinates=None,
    timestamp=...,
) -> CandidateIncident:
    """Candidate dispatched ``seconds`` after BASE_TIME."""
    if timestamp is ...:
        timestamp = BASE_TIME + timedelta(seconds=seconds)
    return CandidateIncident(
        external_id=external_id,
        timestamp=timestamp,
        call_type=call_type,
        address=address,
        coordinates=coordinates,
        units=list(units or []),
        channels=list(channels or []),
        group_id="2-1147",
    )


@pytest.fixture
def candidate():
    return make_candidate


@pytest.fixture
def austin_point():
    return GeoPoint(longitude=-97.7431, latitude=30.2672)
