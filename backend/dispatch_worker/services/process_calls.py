# dispatch_worker/services/process_calls.py
"""
One worker cycle: cursor -> feed page -> per-call stages -> reconciliation
-> persistence.

Per-call stages (transcription, extraction, geocoding) run concurrently in
fixed-size batches; a failure in one call only skips that call. The
reconciler runs once over every candidate of the page.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Sequence

import httpx
from sqlalchemy.orm import Session

from .. import config
from ..schemas import CandidateIncident, RawCall
from .broadcastify import BroadcastifyFeed, CredentialCache
from .dispatch_parser import quick_estimate_resolution
from .geocoding import GeocodingResolver
from .incident_extractor import IncidentExtractor
from .incident_store import IncidentStore
from .reconcile import IncidentReconciler
from .transcription import DeepgramTranscriber

log = logging.getLogger(__name__)

COMMIT_BEFORE_PROCESSING = "before_processing"
COMMIT_AFTER_PERSIST = "after_persist"

PRIORITY_ACTIVE = 1
PRIORITY_STANDARD = 2


@dataclass(frozen=True)
class Checkpoint:
    """Feed position before this cycle and the position to store after it."""

    previous: int
    next: int

    @property
    def advanced(self) -> bool:
        return self.next != self.previous


@dataclass
class CycleResult:
    fetched: int = 0
    parsed: int = 0
    reconciled: int = 0
    processed: int = 0
    skipped: int = 0
    cursor: Optional[int] = None

    def as_dict(self) -> dict:
        return asdict(self)


def call_priority(call: RawCall, now: float) -> int:
    """
    Calls whose likely resolution time exceeds their age are probably still
    active and go first.
    """
    age_minutes = (now - call.ts) / 60
    if age_minutes < quick_estimate_resolution(call.descr or ""):
        return PRIORITY_ACTIVE
    return PRIORITY_STANDARD


def prioritize_calls(calls: Sequence[RawCall], now: Optional[float] = None) -> List[RawCall]:
    """Order by priority, then newest first."""
    now = time.time() if now is None else now
    return sorted(calls, key=lambda c: (call_priority(c, now), -c.ts))


def _batches(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class DispatchPipeline:
    feed: BroadcastifyFeed
    transcriber: DeepgramTranscriber
    extractor: IncidentExtractor
    geocoder: GeocodingResolver
    reconciler: IncidentReconciler = field(default_factory=IncidentReconciler)
    batch_size: int = config.WORKER_BATCH_SIZE
    cursor_commit_mode: str = config.CURSOR_COMMIT_MODE

    @classmethod
    def from_config(cls, cache: Optional[CredentialCache] = None) -> "DispatchPipeline":
        config.require_worker_config()
        return cls(
            feed=BroadcastifyFeed.from_config(cache=cache),
            transcriber=DeepgramTranscriber.from_config(),
            extractor=IncidentExtractor.from_config(),
            geocoder=GeocodingResolver.from_config(),
            batch_size=config.WORKER_BATCH_SIZE,
            cursor_commit_mode=config.CURSOR_COMMIT_MODE,
        )

    async def process_call(self, client: httpx.AsyncClient, call: RawCall) -> Optional[CandidateIncident]:
        """Transcribe, extract and geocode one call; None when the call is skipped."""
        try:
            transcript = await self.transcriber.transcribe(client, call.url)
            log.info("Transcribed %s: %r", call.external_id, transcript[:60])

            parsed = await self.extractor.extract(transcript)
        except Exception as exc:
            log.error("Error processing call %s: %s", call.external_id, exc)
            return None

        coordinates = None
        if parsed.address:
            variants = parsed.address_variants or [parsed.address]
            try:
                coordinates = await self.geocoder.resolve(client, variants)
            except Exception as exc:
                log.warning("Geocoding failed for %s, keeping without location: %s", call.external_id, exc)

        log.info("Processed incident %s", call.external_id)
        return CandidateIncident.from_call(call, parsed, coordinates, transcript)

    async def run_cycle(self, store: IncidentStore, client: httpx.AsyncClient) -> CycleResult:
        log.info("=== Dispatch worker cycle start ===")

        cursor = store.read_cursor()
        page = await self.feed.fetch_page(client, cursor)
        checkpoint = Checkpoint(previous=cursor, next=page.last_pos)
        result = CycleResult(fetched=len(page.calls), cursor=checkpoint.previous)

        if self.cursor_commit_mode == COMMIT_BEFORE_PROCESSING:
            self._commit(store, checkpoint, result)

        calls = prioritize_calls(page.calls)
        existing = store.existing_external_ids(c.external_id for c in calls)
        if existing:
            log.info("%d calls already persisted, skipping", len(existing))
        calls = [c for c in calls if c.external_id not in existing]

        candidates: List[CandidateIncident] = []
        total_batches = (len(calls) + self.batch_size - 1) // self.batch_size
        for number, batch in enumerate(_batches(calls, self.batch_size), start=1):
            log.info("Processing batch %d/%d (%d calls)", number, total_batches, len(batch))
            results = await asyncio.gather(*(self.process_call(client, c) for c in batch))
            done = [r for r in results if r is not None]
            log.info("Batch %d complete: %d/%d successful", number, len(done), len(batch))
            candidates.extend(done)

        result.parsed = len(candidates)
        incidents = self.reconciler.reconcile(candidates) if candidates else []
        result.reconciled = len(incidents)

        if incidents:
            result.processed, result.skipped = store.insert_incidents(incidents)

        if self.cursor_commit_mode == COMMIT_AFTER_PERSIST:
            self._commit(store, checkpoint, result)

        log.info("=== Dispatch worker cycle complete: %s ===", result.as_dict())
        return result

    @staticmethod
    def _commit(store: IncidentStore, checkpoint: Checkpoint, result: CycleResult) -> None:
        if checkpoint.advanced:
            store.write_cursor(checkpoint.next)
        result.cursor = checkpoint.next


async def process_calls_once(
    db: Session,
    pipeline: Optional[DispatchPipeline] = None,
) -> CycleResult:
    """
    Run one worker cycle against the database session ``db``.

    Raises ConfigError, WorkerStateError or FeedError on fatal errors;
    per-call failures are logged and counted, never raised.
    """
    pipeline = pipeline or DispatchPipeline.from_config()
    store = IncidentStore(db)
    async with httpx.AsyncClient() as client:
        return await pipeline.run_cycle(store, client)
