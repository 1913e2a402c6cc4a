# dispatch_worker/services/dispatch_parser.py
"""
Deterministic dispatch-transcript parsing.

Used on its own when the generative extractor is unavailable, and for the
call-type rules that apply to every extraction path.
"""

import logging
import re
from typing import List, Optional, Tuple

from ..schemas import Classification, ParsedCall
from .transcript_cleanup import normalize_transcript

log = logging.getLogger(__name__)

DEFAULT_RESOLUTION_MINUTES = 60

_I = re.IGNORECASE

# (pattern, canonical apparatus name)
UNIT_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b(?:engine|eng|e)\s*(\d+)\b", _I), "Engine"),
    (re.compile(r"\b(?:ladder|lad|l)\s*(\d+)\b", _I), "Ladder"),
    (re.compile(r"\b(?:truck|trk)\s*(\d+)\b", _I), "Truck"),
    (re.compile(r"\b(?:quint)\s*(\d+)\b", _I), "Quint"),
    (re.compile(r"\b(?:medic|med|m)\s*(\d+)\b", _I), "Medic"),
    (re.compile(r"\b(?:ambulance|amb)\s*(\d+)\b", _I), "Ambulance"),
    (re.compile(r"\b(?:battalion|bat|bc)\s*(\d+)\b", _I), "Battalion"),
    (re.compile(r"\b(?:squad|sq)\s*(\d+)\b", _I), "Squad"),
    (re.compile(r"\b(?:rescue|res)\s*(\d+)\b", _I), "Rescue"),
    (re.compile(r"\b(?:tanker|tan)\s*(\d+)\b", _I), "Tanker"),
    (re.compile(r"\b(?:brush|br)\s*(\d+)\b", _I), "Brush"),
    (re.compile(r"\bSR[-\s]*(\d+)\b", _I), "SR"),
]

# Channel names never count as units, whatever the apparatus regexes say.
CHANNEL_PATTERN = re.compile(r"(?:F-TAC|FTAC|Fire\s*TAC|\bTAC)[-\s]*(\d+)", _I)
FIRECOM_PATTERN = re.compile(r"\bFire\s*com\s+(North|South|East|West)\b", _I)
MEDCOM_PATTERN = re.compile(r"\bMed\s*com\s+(\d+)\b", _I)

_STREET_SUFFIX = (
    r"\b(?:street|st|avenue|ave|road|rd|boulevard|blvd|drive|dr|lane|ln|way|"
    r"court|ct|place|pl|circle|cir|parkway|pkwy|trail|trl|loop)\b"
)

ADDRESS_PATTERNS = [
    re.compile(r"(?:\bat|@)\s+(\d+(?:-\d+)?\s+[A-Za-z\s]+?" + _STREET_SUFFIX + r")", _I),
    re.compile(r"(\d+(?:-\d+)?\s+[A-Za-z\s]+?" + _STREET_SUFFIX + r")", _I),
    re.compile(
        r"(?:\bat|@)\s+([A-Za-z\s]+?" + _STREET_SUFFIX + r"\s+and\s+[A-Za-z\s]+?" + _STREET_SUFFIX + r")",
        _I,
    ),
]

ALARM_LEVEL_PATTERN = re.compile(
    r"\b(first|second|third|fourth|fifth|1st|2nd|3rd|4th|5th)\s+alarm\b", _I
)
ALARM_LEVELS = {
    "first": "First Alarm",
    "1st": "First Alarm",
    "second": "Second Alarm",
    "2nd": "Second Alarm",
    "third": "Third Alarm",
    "3rd": "Third Alarm",
    "fourth": "Fourth Alarm",
    "4th": "Fourth Alarm",
    "fifth": "Fifth Alarm",
    "5th": "Fifth Alarm",
}

BARE_PRIORITY_PATTERN = re.compile(r"^\s*code\s+(\d|one|two|three|four)\s*$", _I)

# Operational instructions that are not part of the incident type.
INSTRUCTION_WORDS = {"check", "verify", "confirm", "standby", "stage", "staging"}

# Tokens that end the call-type phrase: location and channel markers.
_CALL_TYPE_STOP = re.compile(
    r"\s+(?:in|at|on|for)\s+(?:AFD|ESD|box|F-TAC|\d)|\s+(?:at|@)\s+|\s+in\s+(?:AFD|ESD)\b",
    _I,
)
_BOX_PATTERN = re.compile(r"\b(?:AFD\s+)?box\s+[A-Z]{0,2}-?\d+\b", _I)

FIRE_KEYWORDS = [
    "fire",
    "smoke",
    "alarm",
    "hazmat",
    "gas leak",
    "explosion",
    "tree down",
    "powerline",
    "elevator",
    "rescue",
]

MEDICAL_KEYWORDS = [
    "medical",
    "chest pain",
    "respiratory",
    "breathing",
    "unconscious",
    "unresponsive",
    "fall",
    "lift assist",
    "cardiac",
    "stroke",
    "seizure",
    "overdose",
    "diabetic",
    "sick person",
    "injury",
    "trauma",
    "gunshot",
    "stabbing",
    "assault",
]

# (pattern, minutes). First match wins.
RESOLUTION_RULES: List[Tuple[re.Pattern, int]] = [
    (re.compile(r"\b(fifth|5th)\s+alarm\b", _I), 480),
    (re.compile(r"\b(fourth|4th)\s+alarm\b", _I), 360),
    (re.compile(r"\b(third|3rd)\s+alarm\b", _I), 240),
    (re.compile(r"\b(second|2nd)\s+alarm\b", _I), 180),
    (re.compile(r"\b(first|1st)\s+alarm\b|\bbox\s+alarm\b", _I), 90),
    (re.compile(r"\b(structure\s+fire|building\s+fire|house\s+fire)\b", _I), 45),
    (re.compile(r"\b(vehicle\s+fire|car\s+fire)\b", _I), 30),
    (re.compile(r"\b(brush\s+fire|wildfire|grass\s+fire)\b", _I), 45),
    (re.compile(r"\b(hazmat|hazardous\s+materials)\b", _I), 90),
    (re.compile(r"\b(rescue|confined\s+space|trench\s+rescue|water\s+rescue)\b", _I), 60),
    (re.compile(r"\b(cardiac\s+arrest|code\s+blue|cpr)\b", _I), 30),
    (re.compile(r"\b(chest\s+pain|heart\s+attack|mi)\b", _I), 30),
    (re.compile(r"\b(stroke|cva)\b", _I), 30),
    (re.compile(r"\b(unconscious|unresponsive)\b", _I), 30),
    (re.compile(r"\b(respiratory|breathing|difficulty\s+breathing)\b", _I), 30),
    (re.compile(r"\b(trauma|shooting|gunshot|stabbing)\b", _I), 45),
    (re.compile(r"\b(overdose|od)\b", _I), 30),
    (re.compile(r"\blift\s+assist\b", _I), 20),
    (re.compile(r"\b(alarm\s+activation|fire\s+alarm)\b", _I), 15),
    (re.compile(r"\b(fall|fallen)\b", _I), 25),
    (re.compile(r"\b(mva|motor\s+vehicle\s+accident|traffic\s+accident|collision)\b", _I), 45),
]

STREET_ABBREVIATIONS = [
    ("Street", "St"),
    ("Road", "Rd"),
    ("Drive", "Dr"),
    ("Boulevard", "Blvd"),
    ("Lane", "Ln"),
    ("Avenue", "Ave"),
    ("Court", "Ct"),
    ("Place", "Pl"),
    ("Parkway", "Pkwy"),
    ("Trail", "Trl"),
    ("Circle", "Cir"),
]

DIRECTIONAL_ABBREVIATIONS = [
    ("North", "N"),
    ("South", "S"),
    ("East", "E"),
    ("West", "W"),
]

CITY_SUFFIXES = ["Austin, TX", "Austin, Texas", "Travis County, TX"]


def quick_estimate_resolution(text: str) -> int:
    """
    Regex-only guess of minutes until an incident clears.

    Cheap enough to run on every feed description before any transcription.
    """
    for pattern, minutes in RESOLUTION_RULES:
        if pattern.search(text or ""):
            return minutes
    return DEFAULT_RESOLUTION_MINUTES


def title_case(phrase: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in phrase.split())


def strip_unit_dashes(unit: str) -> str:
    """'Engine 14-01' -> 'Engine 1401', 'SR-20' -> 'SR20'."""
    unit = re.sub(r"(\w+)\s+(\d+)-(\d+)", r"\1 \2\3", unit.strip())
    unit = re.sub(r"^SR[-\s]*(\d+)$", r"SR\1", unit, flags=_I)
    return unit


def is_channel_name(value: str) -> bool:
    return bool(
        re.match(r"^(?:F[-\s]?Pack|FPack)[-\s]*\d+$", value, _I)
        or re.match(r"^(?:F-?TAC)[-\s]*\d+$", value, _I)
    )


def dedupe(values) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def extract_units(transcript: str) -> List[str]:
    """All apparatus callouts, in the order they are spoken."""
    masked = CHANNEL_PATTERN.sub(lambda m: " " * len(m.group(0)), transcript)
    masked = _BOX_PATTERN.sub(lambda m: " " * len(m.group(0)), masked)
    masked = re.sub(r"\bESD\s+\d+", lambda m: " " * len(m.group(0)), masked, flags=_I)

    found: List[Tuple[int, str]] = []
    for pattern, name in UNIT_PATTERNS:
        for match in pattern.finditer(masked):
            number = match.group(1)
            unit = f"SR{number}" if name == "SR" else f"{name} {number}"
            found.append((match.start(), unit))

    found.sort(key=lambda item: item[0])
    return dedupe(unit for _, unit in found)


def extract_channels(transcript: str) -> List[str]:
    channels = [f"F-TAC-{m.group(1)}" for m in CHANNEL_PATTERN.finditer(transcript)]
    channels += [f"Firecom {m.group(1).title()}" for m in FIRECOM_PATTERN.finditer(transcript)]
    channels += [f"Medcom {m.group(1)}" for m in MEDCOM_PATTERN.finditer(transcript)]
    return dedupe(channels)


def extract_address(transcript: str) -> Optional[str]:
    for pattern in ADDRESS_PATTERNS:
        match = pattern.search(transcript)
        if match:
            return re.sub(r"\s+", " ", match.group(1)).strip()
    return None


def alarm_level(transcript: str) -> Optional[str]:
    match = ALARM_LEVEL_PATTERN.search(transcript or "")
    if not match:
        return None
    return ALARM_LEVELS.get(match.group(1).lower(), "Alarm")


def strip_instruction_words(call_type: str) -> str:
    words = [w for w in call_type.split() if w.lower().strip(",.") not in INSTRUCTION_WORDS]
    # "Assault check for possible staging instructions" -> "Assault"
    for i, word in enumerate(words):
        if word.lower() in ("for", "possible") and i > 0:
            words = words[:i]
            break
    return " ".join(words)


def _clean_phrase(phrase: str) -> str:
    phrase = _BOX_PATTERN.sub(" ", phrase)
    for pattern, _ in UNIT_PATTERNS:
        phrase = pattern.sub(" ", phrase)
    phrase = CHANNEL_PATTERN.sub(" ", phrase)
    phrase = re.sub(r"[^A-Za-z0-9\s]", " ", phrase)
    phrase = re.sub(r"\bresponse\b.*$", " ", phrase, flags=_I)
    return re.sub(r"\s+", " ", phrase).strip()


def _lead_segments(transcript: str) -> List[str]:
    """Comma-separated phrases that precede the location of the call."""
    stop = _CALL_TYPE_STOP.search(transcript)
    lead = transcript[: stop.start()] if stop else transcript
    segments = [_clean_phrase(s) for s in re.split(r"[,.;]", lead)]
    return [s for s in segments if s and not s.isdigit()]


def guess_call_type(transcript: str) -> Optional[str]:
    """
    Heuristic call type from the lead clause of a dispatch.

    "SR-20 fall at 123 Main St" -> "Fall";
    "Sick person, code 1, in AFD box 801" -> "Sick Person Code 1".
    """
    segments = _lead_segments(transcript)
    if not segments:
        return None

    phrase = segments[-1]
    if BARE_PRIORITY_PATTERN.match(phrase) and len(segments) > 1:
        phrase = f"{segments[-2]} {phrase}"

    phrase = strip_instruction_words(phrase)
    if not phrase or BARE_PRIORITY_PATTERN.match(phrase):
        return None
    return title_case(phrase)


def apply_call_type_policy(call_type: Optional[str], transcript: str) -> Optional[str]:
    """
    Rules every extraction path must satisfy.

    An alarm-level phrase anywhere in the transcript wins. A bare priority
    suffix ("Code 1") is joined to the incident phrase spoken next to it, or
    dropped when there is none.
    """
    level = alarm_level(transcript)
    if level:
        return level

    if not call_type or not call_type.strip():
        return None
    call_type = call_type.strip()

    if BARE_PRIORITY_PATTERN.match(call_type):
        priority = title_case(call_type)
        match = re.search(
            r"([A-Za-z][A-Za-z\s]*?)\s*,?\s*" + re.escape(call_type.split()[0]) + r"\s+"
            + re.escape(call_type.split()[-1]) + r"\b",
            transcript,
            _I,
        )
        if match:
            phrase = strip_instruction_words(_clean_phrase(match.group(1)))
            segments = [s for s in re.split(r"[,.;]", phrase) if s.strip()]
            if segments:
                return f"{title_case(segments[-1])} {priority}"
        log.debug("Dropping bare priority call type %r", call_type)
        return None

    stripped = strip_instruction_words(call_type)
    return stripped or None


def classify(text: str) -> Classification:
    lower = (text or "").lower()
    if any(k in lower for k in MEDICAL_KEYWORDS):
        return "medical"
    if any(k in lower for k in FIRE_KEYWORDS):
        return "fire"
    return "unknown"


def _replace_words(address: str, pairs, expand: bool) -> str:
    result = address
    for long_form, short_form in pairs:
        if expand:
            result = re.sub(rf"\b{short_form}\b\.?", long_form, result, flags=_I)
        else:
            result = re.sub(rf"\b{long_form}\b", short_form, result, flags=_I)
    return result


def address_variants(address: Optional[str]) -> List[str]:
    """
    Geocoding-ready spellings of one address.

    Covers the address as heard, abbreviated and expanded street types and
    directionals, city suffixes and, for block ranges, the first number only.
    """
    if not address:
        return []

    bases = [address]
    range_match = re.match(r"^(\d+)-\d+\s+(.+)$", address)
    if range_match:
        bases.append(f"{range_match.group(1)} {range_match.group(2)}")

    variants: List[str] = []
    for base in bases:
        abbreviated = _replace_words(base, STREET_ABBREVIATIONS, expand=False)
        expanded = _replace_words(base, STREET_ABBREVIATIONS, expand=True)
        forms = [base, abbreviated, expanded]
        forms += [_replace_words(f, DIRECTIONAL_ABBREVIATIONS, expand=False) for f in (base, abbreviated)]
        forms += [_replace_words(f, DIRECTIONAL_ABBREVIATIONS, expand=True) for f in (base, expanded)]
        for form in dedupe(forms):
            variants.append(form)
            variants.extend(f"{form}, {suffix}" for suffix in CITY_SUFFIXES[:1])

    variants.extend(f"{address}, {suffix}" for suffix in CITY_SUFFIXES[1:])
    return dedupe(variants)


def parse_dispatch_call(transcript: str) -> ParsedCall:
    """
    Regex-only parse of a dispatch transcript. Never raises.
    """
    try:
        cleaned = normalize_transcript(transcript)
    except Exception:
        log.exception("Transcript normalization failed; parsing raw text")
        cleaned = transcript or ""

    call_type = apply_call_type_policy(guess_call_type(cleaned), cleaned)
    units = extract_units(cleaned)
    channels = extract_channels(cleaned)
    address = extract_address(cleaned)
    classification = classify(call_type or "")
    if classification == "unknown":
        classification = classify(cleaned)

    log.info(
        "Regex parse: call_type=%r units=%s channels=%s address=%r",
        call_type,
        units,
        channels,
        address,
    )

    return ParsedCall(
        call_type=call_type,
        units=units,
        channels=channels,
        address=address,
        address_variants=address_variants(address),
        classification=classification,
        estimated_resolution_minutes=DEFAULT_RESOLUTION_MINUTES,
        raw_transcript=cleaned,
    )
