# dispatch_worker/services/reconcile.py
"""
Batch-wide reconciliation of one cycle's candidate incidents.

Radio traffic about a single incident arrives as several calls: the initial
dispatch, unit additions, upgrades, repeated addresses. The reconciler
collapses those into one record per incident in three passes, all over the
same newest-first ordering:

1. unit reassignment: a unit belongs to the newest call that names it;
2. call-type + address dedup;
3. fuzzy merge of near-simultaneous candidates that share a unit or an
   address.

Pairwise comparison in the merge pass is O(n^2) per round, which is fine for
feed pages of a few hundred calls.
"""

import itertools
import logging
import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from ..schemas import MISSING_FIELD, CandidateIncident

log = logging.getLogger(__name__)

MERGE_WINDOW = timedelta(minutes=5)
SHARED_UNIT_WINDOW = timedelta(minutes=5)
SIMILAR_ADDRESS_WINDOW = timedelta(seconds=60)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_LEADING_NUMBER = re.compile(r"^\d+")
_WORD = re.compile(r"\b[a-z]+\b")


def _has_value(value: Optional[str], placeholders: Tuple[str, ...] = (MISSING_FIELD,)) -> bool:
    return bool(value) and value not in placeholders


def normalize_call_type(call_type: Optional[str]) -> str:
    return _NON_ALNUM.sub("", (call_type or "").lower())


def normalize_address(address: Optional[str]) -> str:
    if not _has_value(address):
        return ""
    return _NON_ALNUM.sub("", address.lower())


def _main_street(address: str) -> str:
    return "".join(_WORD.findall(address.lower())[:2])


def addresses_similar(a: Optional[str], b: Optional[str]) -> bool:
    """
    Loose address match for calls about the same scene.

    True on exact or substring match of the normalized forms, on the same
    house number with overlapping street text, or when the first two words
    agree and spell at least six letters.
    """
    if not _has_value(a) or not _has_value(b):
        return False

    norm_a, norm_b = normalize_address(a), normalize_address(b)
    if not norm_a or not norm_b:
        return False
    if norm_a in norm_b or norm_b in norm_a:
        return True

    num_a = _LEADING_NUMBER.match(norm_a)
    num_b = _LEADING_NUMBER.match(norm_b)
    if num_a and num_b and num_a.group() == num_b.group():
        base_a = norm_a[num_a.end():]
        base_b = norm_b[num_b.end():]
        if base_a in base_b or base_b in base_a:
            return True

    street_a, street_b = _main_street(a), _main_street(b)
    return len(street_a) >= 6 and street_a == street_b


def _sort_key(candidate: CandidateIncident) -> datetime:
    return candidate.timestamp or _OLDEST


def _newest_first(candidates: Sequence[CandidateIncident]) -> List[CandidateIncident]:
    return sorted(candidates, key=_sort_key, reverse=True)


def _units(candidate: CandidateIncident) -> List[str]:
    # an undated candidate cannot be placed against the others
    if candidate.timestamp is None:
        return []
    return candidate.units


def _address(candidate: CandidateIncident) -> Optional[str]:
    if candidate.timestamp is None:
        return None
    return candidate.address


def _union(first: Sequence[str], second: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(itertools.chain(first, second)))


class IncidentReconciler:
    def __init__(
        self,
        merge_window: timedelta = MERGE_WINDOW,
        shared_unit_window: timedelta = SHARED_UNIT_WINDOW,
        similar_address_window: timedelta = SIMILAR_ADDRESS_WINDOW,
    ):
        self.merge_window = merge_window
        self.shared_unit_window = shared_unit_window
        self.similar_address_window = similar_address_window

    def reconcile(self, candidates: Sequence[CandidateIncident]) -> List[CandidateIncident]:
        log.info("Reconciling %d candidate incidents", len(candidates))

        reassigned = self.reassign_units(candidates)
        log.info("After unit reassignment: %d -> %d", len(candidates), len(reassigned))

        deduplicated = self.dedupe_by_call_type_and_address(reassigned)
        log.info("After call type + address dedup: %d -> %d", len(reassigned), len(deduplicated))

        merged = self.merge_related(deduplicated)
        log.info("After merging related incidents: %d -> %d", len(deduplicated), len(merged))
        return merged

    # Pass 1
    def reassign_units(self, candidates: Sequence[CandidateIncident]) -> List[CandidateIncident]:
        """
        Strip units already claimed by a strictly newer candidate.

        Candidates sharing a timestamp do not claim units from each other;
        the merge pass sees them later as simultaneous.
        """
        claimed = set()
        kept: List[CandidateIncident] = []

        for _, group in itertools.groupby(_newest_first(candidates), key=_sort_key):
            claimed_here = set()
            for candidate in group:
                units = _units(candidate)
                if not units:
                    kept.append(candidate)
                    continue

                available = [u for u in units if u not in claimed]
                if not available:
                    log.info(
                        "Removing %s at %s (all units reassigned)",
                        candidate.external_id,
                        candidate.address,
                    )
                    continue

                kept.append(replace(candidate, units=available))
                claimed_here.update(available)
            claimed.update(claimed_here)

        return kept

    # Pass 2
    def dedupe_by_call_type_and_address(
        self, candidates: Sequence[CandidateIncident]
    ) -> List[CandidateIncident]:
        by_call_type: Dict[str, List[CandidateIncident]] = {}
        for candidate in _newest_first(candidates):
            by_call_type.setdefault(normalize_call_type(candidate.call_type), []).append(candidate)

        kept: List[CandidateIncident] = []
        for incidents in by_call_type.values():
            addressed = [c for c in incidents if _has_value(_address(c))]
            unaddressed = [c for c in incidents if not _has_value(_address(c))]

            by_address: Dict[str, List[CandidateIncident]] = {}
            for candidate in addressed:
                by_address.setdefault(normalize_address(candidate.address), []).append(candidate)

            for address, group in by_address.items():
                # groups inherit the newest-first order
                kept.append(group[0])
                if len(group) > 1:
                    log.info("Keeping newest of %d incidents at address %s", len(group), address)

            addressed_units = set()
            for candidate in addressed:
                addressed_units.update(candidate.units)

            for candidate in unaddressed:
                units = _units(candidate)
                if not units:
                    log.info("Removing %s with no address and no units", candidate.external_id)
                elif any(u not in addressed_units for u in units):
                    kept.append(candidate)
                else:
                    log.info(
                        "Removing %s with no address (all units in addressed incidents)",
                        candidate.external_id,
                    )

        return kept

    # Pass 3
    def merge_related(self, candidates: Sequence[CandidateIncident]) -> List[CandidateIncident]:
        merged = _newest_first(candidates)

        while True:
            pair = self._find_merge_pair(merged)
            if pair is None:
                return merged

            i, j = pair
            survivor, absorbed = merged[i], merged[j]
            if absorbed.coordinates is not None and survivor.coordinates is None:
                survivor, absorbed = absorbed, survivor
                i, j = j, i

            merged[i] = self._absorb(survivor, absorbed)
            del merged[j]

    def _find_merge_pair(self, candidates: Sequence[CandidateIncident]) -> Optional[Tuple[int, int]]:
        for i, j in itertools.combinations(range(len(candidates)), 2):
            if self.should_merge(candidates[i], candidates[j]):
                return i, j
        return None

    def should_merge(self, a: CandidateIncident, b: CandidateIncident) -> bool:
        if a.timestamp is None or b.timestamp is None:
            return False

        gap = abs(a.timestamp - b.timestamp)
        if gap > self.merge_window:
            return False

        if gap <= self.shared_unit_window and set(a.units) & set(b.units):
            return True
        return gap < self.similar_address_window and addresses_similar(a.address, b.address)

    @staticmethod
    def _absorb(survivor: CandidateIncident, absorbed: CandidateIncident) -> CandidateIncident:
        updates = {}

        if not _has_value(survivor.call_type, (MISSING_FIELD, "-")) and _has_value(
            absorbed.call_type, (MISSING_FIELD, "-")
        ):
            log.info(
                "Merging call type %r from %s into %s",
                absorbed.call_type,
                absorbed.external_id,
                survivor.external_id,
            )
            updates["call_type"] = absorbed.call_type

        if not _has_value(survivor.address) and _has_value(absorbed.address):
            log.info(
                "Merging address %r from %s into %s",
                absorbed.address,
                absorbed.external_id,
                survivor.external_id,
            )
            updates["address"] = absorbed.address

        if survivor.coordinates is None and absorbed.coordinates is not None:
            updates["coordinates"] = absorbed.coordinates

        updates["units"] = _union(survivor.units, absorbed.units)
        updates["channels"] = _union(survivor.channels, absorbed.channels)

        log.info("Removing duplicate incident %s", absorbed.external_id)
        return replace(survivor, **updates)
