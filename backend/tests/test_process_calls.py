"""Tests for one worker cycle with in-memory stand-ins for every provider."""

import pytest

from dispatch_worker.exceptions import FeedError, TranscriptionError
from dispatch_worker.schemas import FeedPage, GeoPoint, RawCall
from dispatch_worker.services.incident_extractor import IncidentExtractor
from dispatch_worker.services.process_calls import (
    COMMIT_AFTER_PERSIST,
    COMMIT_BEFORE_PROCESSING,
    Checkpoint,
    CycleResult,
    DispatchPipeline,
    call_priority,
    prioritize_calls,
)

NOW = 1_700_000_000
POINT = GeoPoint(longitude=-97.7431, latitude=30.2672)


def raw_call(ts, url, descr=""):
    return RawCall(groupId="2-1147", ts=ts, start_ts=ts - 10, url=url, descr=descr, duration=8)


class FakeStore:
    def __init__(self, cursor=NOW - 600, existing=()):
        self.cursor = cursor
        self.existing = set(existing)
        self.events = []
        self.inserted = []

    def read_cursor(self):
        return self.cursor

    def write_cursor(self, position):
        self.events.append(("cursor", position))
        self.cursor = position

    def existing_external_ids(self, external_ids):
        return {i for i in external_ids if i in self.existing}

    def insert_incidents(self, candidates):
        self.events.append(("insert", len(candidates)))
        fresh = [c for c in candidates if c.external_id not in self.existing]
        self.existing.update(c.external_id for c in fresh)
        self.inserted.extend(fresh)
        return len(fresh), len(candidates) - len(fresh)


class FakeFeed:
    def __init__(self, calls, last_pos=NOW, error=None):
        self.page = FeedPage(serverTime=NOW, lastPos=last_pos, calls=calls)
        self.error = error
        self.cursors = []

    async def fetch_page(self, client, cursor):
        self.cursors.append(cursor)
        if self.error is not None:
            raise self.error
        return self.page


class FakeTranscriber:
    def __init__(self, transcripts, events):
        self.transcripts = transcripts
        self.events = events

    async def transcribe(self, client, audio_url):
        self.events.append(("transcribe", audio_url))
        value = self.transcripts[audio_url]
        if isinstance(value, Exception):
            raise value
        return value


class FakeGeocoder:
    def __init__(self, point=POINT, error=None):
        self.point = point
        self.error = error
        self.queries = []

    async def resolve(self, client, variants):
        self.queries.append(list(variants))
        if self.error is not None:
            raise self.error
        return self.point


CALLS = [
    raw_call(NOW - 120, "https://calls.example/1.m4a"),
    raw_call(NOW - 60, "https://calls.example/2.m4a"),
    raw_call(NOW - 30, "https://calls.example/3.m4a"),
]

TRANSCRIPTS = {
    "https://calls.example/1.m4a": "Engine 3 structure fire at 100 Oak St",
    "https://calls.example/2.m4a": "Medic 5 chest pain at 200 Elm St",
    "https://calls.example/3.m4a": "Truck 9 lift assist at 300 Pine St",
}


def pipeline(store, calls=CALLS, transcripts=TRANSCRIPTS, feed=None, geocoder=None, **kwargs):
    return DispatchPipeline(
        feed=feed or FakeFeed(calls),
        transcriber=FakeTranscriber(transcripts, store.events),
        extractor=IncidentExtractor(client=None),
        geocoder=geocoder or FakeGeocoder(),
        **kwargs,
    )


# ── Priority ──

class TestPriority:
    def test_recent_call_within_estimate_is_priority(self):
        call = raw_call(NOW - 100 * 60, "u", descr="Second Alarm")
        assert call_priority(call, NOW) == 1

    def test_call_older_than_estimate_is_standard(self):
        call = raw_call(NOW - 30 * 60, "u", descr="Lift Assist")
        assert call_priority(call, NOW) == 2

    def test_priority_then_newest_first(self):
        alarm = raw_call(NOW - 100 * 60, "alarm", descr="Second Alarm")
        fresh = raw_call(NOW - 5 * 60, "fresh", descr="")
        stale = raw_call(NOW - 30 * 60, "stale", descr="Lift Assist")

        ordered = prioritize_calls([stale, alarm, fresh], now=NOW)

        assert [c.url for c in ordered] == ["fresh", "alarm", "stale"]


class TestCheckpoint:
    def test_advanced(self):
        assert Checkpoint(previous=1, next=2).advanced
        assert not Checkpoint(previous=2, next=2).advanced

    def test_cycle_result_dict(self):
        result = CycleResult(fetched=3, parsed=2, reconciled=2, processed=1, skipped=1, cursor=9)
        assert result.as_dict() == {
            "fetched": 3,
            "parsed": 2,
            "reconciled": 2,
            "processed": 1,
            "skipped": 1,
            "cursor": 9,
        }


# ── Cycle ──

class TestRunCycle:
    @pytest.mark.asyncio
    async def test_happy_path(self):
        store = FakeStore()

        result = await pipeline(store).run_cycle(store, client=None)

        assert result.as_dict() == {
            "fetched": 3,
            "parsed": 3,
            "reconciled": 3,
            "processed": 3,
            "skipped": 0,
            "cursor": NOW,
        }
        by_id = {c.external_id: c for c in store.inserted}
        fire = by_id[CALLS[0].external_id]
        assert fire.call_type == "Structure Fire"
        assert fire.units == ["Engine 3"]
        assert fire.address == "100 Oak St"
        assert fire.coordinates == POINT
        assert fire.classification == "fire"

    @pytest.mark.asyncio
    async def test_cursor_committed_before_processing_by_default(self):
        store = FakeStore()

        await pipeline(store, cursor_commit_mode=COMMIT_BEFORE_PROCESSING).run_cycle(store, client=None)

        assert store.events[0] == ("cursor", NOW)
        assert store.events[-1] == ("insert", 3)

    @pytest.mark.asyncio
    async def test_cursor_committed_after_persist(self):
        store = FakeStore()

        await pipeline(store, cursor_commit_mode=COMMIT_AFTER_PERSIST).run_cycle(store, client=None)

        assert store.events[-2] == ("insert", 3)
        assert store.events[-1] == ("cursor", NOW)

    @pytest.mark.asyncio
    async def test_unchanged_cursor_not_written(self):
        store = FakeStore(cursor=NOW)

        result = await pipeline(store, feed=FakeFeed([], last_pos=NOW)).run_cycle(store, client=None)

        assert ("cursor", NOW) not in store.events
        assert result.processed == 0
        assert result.cursor == NOW

    @pytest.mark.asyncio
    async def test_initial_cursor_passed_to_feed(self):
        store = FakeStore(cursor=0)
        feed = FakeFeed(CALLS)

        await pipeline(store, feed=feed).run_cycle(store, client=None)

        assert feed.cursors == [0]

    @pytest.mark.asyncio
    async def test_feed_error_is_fatal_and_cursor_kept(self):
        store = FakeStore()
        feed = FakeFeed(CALLS, error=FeedError("Broadcastify API error: HTTP 503"))

        with pytest.raises(FeedError):
            await pipeline(store, feed=feed).run_cycle(store, client=None)

        assert store.events == []

    @pytest.mark.asyncio
    async def test_failed_call_is_skipped(self):
        store = FakeStore()
        transcripts = dict(TRANSCRIPTS)
        transcripts[CALLS[1].url] = TranscriptionError("No transcript returned from Deepgram")

        result = await pipeline(store, transcripts=transcripts).run_cycle(store, client=None)

        assert result.parsed == 2
        assert result.processed == 2
        assert CALLS[1].external_id not in {c.external_id for c in store.inserted}

    @pytest.mark.asyncio
    async def test_geocoding_failure_keeps_call_without_location(self):
        store = FakeStore()
        geocoder = FakeGeocoder(error=RuntimeError("provider exploded"))

        result = await pipeline(store, geocoder=geocoder).run_cycle(store, client=None)

        assert result.processed == 3
        assert all(c.coordinates is None for c in store.inserted)

    @pytest.mark.asyncio
    async def test_no_geocoding_without_address(self):
        store = FakeStore()
        calls = [raw_call(NOW - 30, "https://calls.example/x.m4a")]
        geocoder = FakeGeocoder()

        await pipeline(
            store,
            calls=calls,
            transcripts={calls[0].url: "Engine 3, respond to the fire"},
            geocoder=geocoder,
        ).run_cycle(store, client=None)

        assert geocoder.queries == []

    @pytest.mark.asyncio
    async def test_persisted_calls_not_transcribed(self):
        store = FakeStore(existing={CALLS[0].external_id})

        result = await pipeline(store).run_cycle(store, client=None)

        transcribed = [url for kind, url in store.events if kind == "transcribe"]
        assert CALLS[0].url not in transcribed
        assert result.fetched == 3
        assert result.parsed == 2

    @pytest.mark.asyncio
    async def test_rerun_inserts_nothing(self):
        store = FakeStore()
        worker = pipeline(store, feed=FakeFeed(CALLS, last_pos=NOW))

        first = await worker.run_cycle(store, client=None)
        second = await worker.run_cycle(store, client=None)

        assert first.processed == 3
        assert second.processed == 0
        assert len(store.inserted) == 3

    @pytest.mark.asyncio
    async def test_reconciliation_spans_batches(self):
        store = FakeStore()
        calls = [
            raw_call(NOW - 600, "https://calls.example/old.m4a"),
            raw_call(NOW - 30, "https://calls.example/new.m4a"),
        ]
        transcripts = {
            calls[0].url: "Engine 3 structure fire at 100 Oak St",
            calls[1].url: "Engine 3 box alarm at 900 Elm St",
        }

        result = await pipeline(store, calls=calls, transcripts=transcripts, batch_size=1).run_cycle(
            store, client=None
        )

        # Engine 3 belongs to the newer call
        assert result.parsed == 2
        assert result.reconciled == 1
        assert [c.external_id for c in store.inserted] == [calls[1].external_id]
