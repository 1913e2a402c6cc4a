# dispatch_worker/routers/incidents.py

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from geoalchemy2.functions import ST_X, ST_Y
from geoalchemy2.types import Geometry
from sqlalchemy import cast
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.incidents import Incident

router = APIRouter()


@router.get("/recent")
def get_recent_incidents(
    limit: int = 100,
    hours: int = 24,
    db: Session = Depends(get_db),
):
    """
    Return reconciled incidents dispatched in the last `hours` hours,
    newest first, up to `limit` rows.
    """
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    point = cast(Incident.location, Geometry)

    q = (
        db.query(Incident, ST_X(point).label("longitude"), ST_Y(point).label("latitude"))
        .filter(Incident.timestamp >= since)
        .order_by(Incident.timestamp.desc())
        .limit(limit)
    )

    items = []
    for inc, longitude, latitude in q.all():
        items.append(
            {
                "external_id": inc.external_id,
                "call_type": inc.call_type,
                "incident_type": inc.incident_type,
                "address": inc.address,
                "units": inc.units or [],
                "channels": inc.channels or [],
                "ts": inc.timestamp.isoformat() if inc.timestamp else None,
                "estimated_resolution_minutes": inc.estimated_resolution_minutes,
                "audio_url": inc.audio_url,
                "latitude": latitude,
                "longitude": longitude,
            }
        )

    return {"items": items}
