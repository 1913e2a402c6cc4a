# dispatch_worker/services/transcript_cleanup.py

import re
from typing import Callable, List, Tuple, Union

Replacement = Union[str, Callable[[re.Match], str]]

_ORDINAL_ONES = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
}


def ordinal_suffix(n: int) -> str:
    if n % 10 == 1 and n % 100 != 11:
        return "st"
    if n % 10 == 2 and n % 100 != 12:
        return "nd"
    if n % 10 == 3 and n % 100 != 13:
        return "rd"
    return "th"


def _join_tens_and_ordinal(match: re.Match) -> str:
    """'20 Second' -> '22nd'."""
    combined = int(match.group(1)) + _ORDINAL_ONES[match.group(2).lower()]
    return f"{combined}{ordinal_suffix(combined)}"


_I = re.IGNORECASE
_STREET_START = r"(East|West|North|South|[A-Z])"

# Known speech-to-text misrecognitions on the Austin fire dispatch channels.
# Order matters: earlier rules feed later ones.
CORRECTIONS: List[Tuple[re.Pattern, Replacement]] = [
    # agency homophones
    (re.compile(r"\bASD\b", _I), "AFD"),
    (re.compile(r"\bAFV\b", _I), "AFD"),
    # apparatus confusions
    (re.compile(r"\bN\s*(\d+)\b", _I), r"Engine \1"),
    (re.compile(r"\bQuinn\s+(\d+)\b", _I), r"Quint \1"),
    (re.compile(r"\bWind\s+(\d+)\b", _I), r"Quint \1"),
    (re.compile(r"\b(Quint)(\d+)\b", _I), r"\1 \2"),
    (re.compile(r"\bItalian\s+(\d+)\b", _I), r"Battalion \1"),
    (re.compile(r"\bWAD\s+(\d+)\b", _I), r"Squad \1"),
    # "APS 2803 Parker Lane" is "at 2803 Parker Lane"
    (re.compile(r"\bAPS\s+(\d+)", _I), r"at \1"),
    # channels
    (re.compile(r"\bF-Pack[-\s]+(\d+)\b", _I), r"F-TAC-\1"),
    (re.compile(r"\bS[-\s]?Pack[-\s]+(\d+)\b", _I), r"F-TAC-\1"),
    # call types
    (re.compile(r"\bFox\s+Alarm\b", _I), "Box Alarm"),
    (re.compile(r"\bFillbox\s+Alarm\b", _I), "Stillbox Alarm"),
    (re.compile(r"\bthree\s+down\b", _I), "Tree Down"),
    (re.compile(r"\b3\s+down\b", _I), "Tree Down"),
    (re.compile(r"\bpower\s+lines?\s+down\b", _I), "powerline down"),
    (re.compile(r"\bActs\s+(\d+)", _I), r"at \1"),
    (re.compile(r"\bPlate\b", _I), "Place"),
    # "1200512 East" -> "12512 East": a spoken "hundred" rendered as 00
    (re.compile(r"\b(\d{1,2})00(\d{3,5})\s+" + _STREET_START, _I), r"\1\2 \3"),
    # run-together block ranges: "12212316 Anderson" -> "1221-2316 Anderson"
    (re.compile(r"\b(\d{4})(\d{4})\s+" + _STREET_START, _I), r"\1-\2 \3"),
    (re.compile(r"\b(\d{3})(\d{3})\s+" + _STREET_START, _I), r"\1-\2 \3"),
    (re.compile(r"\b(\d{4})(\d{3})\s+" + _STREET_START, _I), r"\1-\2 \3"),
    (re.compile(r"\b(\d{4})(\d{2})\s+" + _STREET_START, _I), r"\1-\2 \3"),
    # "20 Second" -> "22nd"
    (
        re.compile(
            r"\b(\d0)\s+(First|Second|Third|Fourth|Fifth|Sixth|Seventh|Eighth|Ninth)\b",
            _I,
        ),
        _join_tens_and_ordinal,
    ),
    # alarm boxes
    (re.compile(r"\b(?:Bach|batch)\s*,?\s*ST[-\s]*(\d+)", _I), r"Box ST-\1"),
    (re.compile(r"\bChesapeake\b", _I), "Chest Pain"),
    (re.compile(r"\bESC\s+(\d+)", _I), r"ESD \1"),
    (re.compile(r"\b[BbRr]oke\b"), "stroke"),
]


def normalize_transcript(transcript: str) -> str:
    """Apply the fixed correction table to a raw transcript."""
    processed = transcript or ""
    for pattern, replacement in CORRECTIONS:
        processed = pattern.sub(replacement, processed)
    return processed
