# dispatch_worker/services/incident_extractor.py

import json
import logging
from typing import Any, List, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError, field_validator

from .. import config
from ..exceptions import ExtractionError
from ..schemas import Classification, ParsedCall
from .dispatch_parser import (
    DEFAULT_RESOLUTION_MINUTES,
    apply_call_type_policy,
    dedupe,
    is_channel_name,
    parse_dispatch_call,
    strip_unit_dashes,
)
from .transcript_cleanup import normalize_transcript

log = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a fire/EMS dispatch call parser for Austin/Travis County, Texas. Extract structured information from dispatch audio transcripts.

Extract:
- callType: ONLY the incident/call type itself, in Title Case, without location details, box numbers or extra context. Do not include "in AFD box", "at [address]", "on [channel]", alarm box identifiers or geographic areas. Strip operational instruction words that modify the incident type: "check", "verify", "confirm", "standby", "stage", "staging" ("Assault Check" -> "Assault", "Fire Standby" -> "Fire"). Examples: "unlock alarm in AFD box 18-01 at East 290 Service Road" -> "Unlock Alarm"; "assist person stuck in elevator in AFD box 5106 at 4700 Westgate Blvd" -> "Assist Person Stuck In Elevator"; "lift assist code 1 in AFD box 801" -> "Lift Assist Code 1". "Code 1", "Code Two" etc. are priority levels and must NEVER be a standalone call type; combine them with the incident type ("Sick Person Code 1"). If an alarm level is mentioned (First Alarm, Second Alarm, ...), use it as the call type.
- incidentType: "fire" or "medical". Fire: fires, alarms, smoke, vehicle/structure/brush fires, hazmat, gas leaks, explosions, non-medical and technical rescues. Medical: medical emergencies, chest pain, respiratory, unconscious persons, injuries, falls, lift assists, cardiac arrest, strokes, seizures, overdoses, diabetic emergencies, any EMS response.
- units: ALL responding units mentioned ANYWHERE in the transcript. Scan the ENTIRE transcript: units appear at the start ("Engine 33, chest pain"), in the middle, or in a list at the end ("Response: Engine 3, Truck 3, Engine 14"). Example: "Second alarm, engine 33, fire standby... Response on FD-201, Engine 3, Truck 3, Engine 14" -> ["Engine 33", "Engine 3", "Truck 3", "Engine 14"]. Unit types: Engine, Truck, Ladder, Medic, Ambulance, Battalion, Squad, Rescue, Brush, Quint, FTO, Safety Officer, Command, Investigator, Wildfire Support, SR (Special Response). "SR-20 fall at 123 Main St" means unit "SR20" responding to a "Fall". "Quinn" is "Quint". Do NOT extract "ESD" numbers (areas), "APS" numbers (addresses), "F-TAC"/"FTAC"/"F-Pack" numbers (radio channels) or alarm box identifiers ("Box ST-51", "Box 2101", "BL1", "ST-51") as units. Remove dashes from unit numbers ("14-01" -> "1401", "SR-20" -> "SR20").
- channels: tactical/radio channels ONLY: F-TAC, Firecom, Medcom. Format F-TAC channels as "F-TAC-###" ("F-TAC-201", not "FD-201"); "F-Pack 203" is "F-TAC-203". Keep Firecom directions ("Firecom North"), never just "Firecom". Box numbers are not channels.
- address: primary street address. Speech recognition garbles addresses; reconstruct the intended address ("Acts 18609 Vanmieter Plate" -> "18609 Van Meter Place", "APS 2803 Parker Lane" -> "2803 Parker Lane"). Format ranges with dashes ("12212-12316 Anderson Mill Road").
- addressVariants: 5-10 geocoding-ready variations for Austin/Travis County, TX: the address as heard; every street type abbreviation and expansion (St/Street, Blvd/Boulevard, Rd/Road, Dr/Drive, Ln/Lane, Ave/Avenue, Ct/Court, Pl/Place, Pkwy/Parkway, Trl/Trail, Cir/Circle, Frontage/Frntg, Service/Svc); every directional abbreviation and expansion (N/North, S/South, E/East, W/West, NE/Northeast, NW/Northwest, SE/Southeast, SW/Southwest) and mixed combinations; "Austin TX" and "Travis County TX" suffixes; corrected spellings of known Austin streets (Guadalupe, Lamar, MoPac/Loop 1, I-35/Interstate 35); variants without directional prefixes; for ranges, the first number only ("2200 Main St" for "2200-2400 Main St").
- estimatedResolutionMinutes: minutes until the incident is likely resolved. Guidelines: medical ~30, traffic accidents ~45, fire alarm activation ~15, lift assist ~20, First Alarm ~60, Second Alarm ~120, Third Alarm+ ~180, vehicle fire ~30, structure fire ~45, hazmat ~90, rescue ~60.

Return valid JSON only. If something isn't mentioned, use null or an empty array. estimatedResolutionMinutes, incidentType and addressVariants must always be provided."""


class ExtractionPayload(BaseModel):
    """
    Shape of the JSON object the model is asked for.

    Every field has a default so that a partially-shaped reply still yields
    a complete ParsedCall; wrong types are coerced or dropped per field.
    """

    callType: Optional[str] = None
    incidentType: Classification = "unknown"
    units: List[str] = []
    channels: List[str] = []
    address: Optional[str] = None
    addressVariants: List[str] = []
    estimatedResolutionMinutes: int = DEFAULT_RESOLUTION_MINUTES

    @field_validator("callType", "address", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None or not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    @field_validator("incidentType", mode="before")
    @classmethod
    def _known_classification(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in ("fire", "medical"):
            return value.strip().lower()
        return "unknown"

    @field_validator("units", "channels", "addressVariants", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(v).strip() for v in value if isinstance(v, (str, int)) and str(v).strip()]

    @field_validator("estimatedResolutionMinutes", mode="before")
    @classmethod
    def _positive_minutes(cls, value: Any) -> int:
        try:
            minutes = int(float(value))
        except (TypeError, ValueError):
            return DEFAULT_RESOLUTION_MINUTES
        return minutes if minutes > 0 else DEFAULT_RESOLUTION_MINUTES


def payload_to_parsed_call(payload: ExtractionPayload, transcript: str) -> ParsedCall:
    units = [strip_unit_dashes(u) for u in payload.units]
    units = dedupe(u for u in units if not is_channel_name(u))

    return ParsedCall(
        call_type=apply_call_type_policy(payload.callType, transcript),
        units=units,
        channels=dedupe(payload.channels),
        address=payload.address,
        address_variants=dedupe(payload.addressVariants),
        classification=payload.incidentType,
        estimated_resolution_minutes=payload.estimatedResolutionMinutes,
        raw_transcript=transcript,
    )


class IncidentExtractor:
    """
    Transcript -> ParsedCall.

    Tries the chat-completion model first; on any failure (or when no API
    key is configured) falls back to the regex parser. ``extract`` never
    raises.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = config.OPENAI_CHAT_MODEL,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @classmethod
    def from_config(cls) -> "IncidentExtractor":
        if not config.OPENAI_API_KEY:
            log.warning("OPENAI_API_KEY not set; using the regex dispatch parser only")
            return cls(client=None)
        return cls(client=AsyncOpenAI(api_key=config.OPENAI_API_KEY))

    async def extract(self, transcript: str) -> ParsedCall:
        cleaned = normalize_transcript(transcript)
        if cleaned != transcript:
            log.debug("After preprocessing: %s", cleaned)

        if self.client is None:
            return parse_dispatch_call(transcript)

        try:
            payload = await self._complete(cleaned)
        except Exception as exc:
            log.warning("AI parsing failed, falling back to regex parser: %s", exc)
            return parse_dispatch_call(transcript)

        parsed = payload_to_parsed_call(payload, cleaned)
        log.info(
            "AI parse: call_type=%r type=%s units=%s channels=%s address=%r variants=%d",
            parsed.call_type,
            parsed.classification,
            parsed.units,
            parsed.channels,
            parsed.address,
            len(parsed.address_variants),
        )
        return parsed

    async def _complete(self, cleaned: str) -> ExtractionPayload:
        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": cleaned},
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        content = resp.choices[0].message.content or "{}"

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"Model reply is not JSON: {content[:200]}") from exc
        if not isinstance(data, dict):
            raise ExtractionError("Model reply is not a JSON object")

        try:
            return ExtractionPayload.model_validate(data)
        except ValidationError as exc:
            raise ExtractionError(str(exc)) from exc
