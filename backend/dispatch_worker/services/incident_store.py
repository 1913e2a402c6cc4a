# dispatch_worker/services/incident_store.py

import logging
from typing import Iterable, Sequence, Set, Tuple

from geoalchemy2.elements import WKTElement
from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import Base, get_engine
from ..exceptions import WorkerStateError
from ..models.incidents import Incident
from ..models.worker_state import WorkerState
from ..schemas import MISSING_FIELD, CandidateIncident

log = logging.getLogger(__name__)

CURSOR_KEY = "lastPos"
INITIAL_CURSOR_VALUE = "0"


def to_model(candidate: CandidateIncident) -> Incident:
    location = None
    if candidate.coordinates is not None:
        location = WKTElement(candidate.coordinates.to_wkt(), srid=4326)

    return Incident(
        external_id=candidate.external_id,
        call_type=candidate.call_type or MISSING_FIELD,
        address=candidate.address or MISSING_FIELD,
        location=location,
        units=list(candidate.units),
        channels=list(candidate.channels),
        timestamp=candidate.timestamp,
        audio_url=candidate.audio_url,
        raw_transcript=candidate.raw_transcript,
        estimated_resolution_minutes=candidate.estimated_resolution_minutes,
        incident_type=candidate.classification,
        group_id=candidate.group_id,
        duration=int(round(candidate.duration_seconds)),
    )


class IncidentStore:
    """
    The worker's view of the database: the feed cursor row and the
    append-only incidents table.
    """

    def __init__(self, db: Session):
        self.db = db

    def read_cursor(self) -> int:
        row = self.db.get(WorkerState, CURSOR_KEY)
        if row is None:
            raise WorkerStateError(
                f"worker_state row {CURSOR_KEY!r} is missing; run the worker with --init-db"
            )
        try:
            return int(row.value)
        except (TypeError, ValueError) as exc:
            raise WorkerStateError(f"Invalid {CURSOR_KEY} value: {row.value!r}") from exc

    def write_cursor(self, position: int) -> None:
        row = self.db.get(WorkerState, CURSOR_KEY)
        if row is None:
            row = WorkerState(key=CURSOR_KEY, value=str(position))
            self.db.add(row)
        else:
            row.value = str(position)
            row.updated_at = func.now()
        self.db.commit()
        log.info("Updated %s to %s", CURSOR_KEY, position)

    def existing_external_ids(self, external_ids: Iterable[str]) -> Set[str]:
        ids = list(set(external_ids))
        if not ids:
            return set()
        q = self.db.query(Incident.external_id).filter(Incident.external_id.in_(ids))
        return {row[0] for row in q.all()}

    def insert_incidents(self, candidates: Sequence[CandidateIncident]) -> Tuple[int, int]:
        """
        Insert one row per candidate; returns (inserted, skipped).

        Idempotent w.r.t. external_id:
        - Preloads the external_ids already present.
        - A row rejected by the unique constraint (a concurrent writer got
          there first) is rolled back and counted as skipped.
        - Any other database error on a row is rolled back, logged and
          counted as skipped; the remaining rows are still attempted.
        """
        existing = self.existing_external_ids(c.external_id for c in candidates)

        inserted = 0
        skipped = 0
        for candidate in candidates:
            if candidate.external_id in existing:
                log.info("Skipping duplicate incident %s", candidate.external_id)
                skipped += 1
                continue

            self.db.add(to_model(candidate))
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                log.info("Skipping duplicate incident %s (unique constraint)", candidate.external_id)
                skipped += 1
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                log.error("Failed to insert incident %s: %s", candidate.external_id, exc)
                skipped += 1
                continue

            existing.add(candidate.external_id)
            inserted += 1
            log.info(
                "Inserted %s: %s at %s",
                candidate.external_id,
                candidate.call_type or MISSING_FIELD,
                candidate.address or MISSING_FIELD,
            )

        log.info("Inserted %d incidents, skipped %d", inserted, skipped)
        return inserted, skipped

    def init_db(self) -> None:
        """Create the tables and seed the cursor row if it is missing."""
        engine = get_engine()
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        Base.metadata.create_all(bind=engine)
        if self.db.get(WorkerState, CURSOR_KEY) is None:
            self.db.add(WorkerState(key=CURSOR_KEY, value=INITIAL_CURSOR_VALUE))
            self.db.commit()
            log.info("Seeded %s=%s", CURSOR_KEY, INITIAL_CURSOR_VALUE)
