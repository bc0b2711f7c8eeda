# events.py — inbound payload shapes and normalization into one canonical event
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from errors import PayloadValidationError

LOG = logging.getLogger("bridge.events")

UNKNOWN = "unknown"

# priority order matters: first hit wins
EVENT_KEYWORDS = ("motion", "person", "vehicle", "package", "alert", "face_known", "face_unknown")
FACE_KEYS = ("face_known", "face_unknown")

Timestamp = Union[int, float, str]


# -------------------- Payload shapes --------------------

class AlarmPayload(BaseModel):
    """Alarm Manager webhook: ``{alarm: {name, conditions, triggers}, timestamp}``."""
    model_config = ConfigDict(extra="allow")

    alarm: Dict[str, Any]
    timestamp: Optional[Timestamp] = None
    eventLocalLink: Optional[str] = None
    eventPath: Optional[str] = None


class FlatPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    eventType: str
    timestamp: Optional[Timestamp] = None
    cameraName: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


RawEventPayload = Union[AlarmPayload, FlatPayload]


def validate_payload(body: Any) -> List[str]:
    errors: List[str] = []
    if not isinstance(body, dict):
        return ["Request body must be a valid JSON object"]
    if not body.get("timestamp"):
        errors.append("Missing required field: timestamp")
    if not isinstance(body.get("alarm"), dict) and not body.get("eventType"):
        errors.append("Missing required field: eventType or alarm")
    return errors


def parse_payload(body: Any) -> RawEventPayload:
    """Resolve a JSON body into one of the known shapes or raise PayloadValidationError."""
    errors = validate_payload(body)
    if errors:
        raise PayloadValidationError(errors)
    try:
        if isinstance(body.get("alarm"), dict):
            return AlarmPayload.model_validate(body)
        return FlatPayload.model_validate(body)
    except ValidationError as e:
        raise PayloadValidationError(
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        ) from e


# -------------------- Canonical event --------------------

class PersonInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    event_id: Optional[str] = None


class NormalizedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str = UNKNOWN
    camera_or_device_label: Optional[str] = None
    person_name: Optional[str] = None
    event_id: Optional[str] = None
    timestamp: Union[datetime, str]
    description: Optional[str] = None
    conditions_summary: Optional[str] = None
    title_hint: Optional[str] = None


# -------------------- Heuristics (alarm shape) --------------------

def _dicts(items: Any) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [i for i in items if isinstance(i, dict)]


def _condition_source(cond: Dict[str, Any]) -> Optional[str]:
    inner = cond.get("condition")
    if isinstance(inner, dict) and isinstance(inner.get("source"), str) and inner["source"]:
        return inner["source"]
    return None


def extract_event_type(alarm: Dict[str, Any]) -> str:
    conditions = alarm.get("conditions")
    if not isinstance(conditions, list) or not conditions:
        return UNKNOWN

    for cond in _dicts(conditions):
        source = _condition_source(cond)
        if not source:
            continue
        low = source.lower()
        for kw in EVENT_KEYWORDS:
            if kw in low:
                return kw

    first = conditions[0] if isinstance(conditions[0], dict) else {}
    source = _condition_source(first)
    return source.lower() if source else UNKNOWN


def extract_device_info(alarm: Dict[str, Any]) -> Optional[str]:
    parts: List[str] = []
    for trigger in _dicts(alarm.get("triggers")):
        if trigger.get("device"):
            parts.append(f"Device: {trigger['device']}")
        if trigger.get("key"):
            parts.append(f"Trigger: {trigger['key']}")
    return " | ".join(parts) if parts else None


def extract_person_info(alarm: Dict[str, Any]) -> Optional[PersonInfo]:
    for trigger in _dicts(alarm.get("triggers")):
        if trigger.get("key") not in FACE_KEYS:
            continue
        group = trigger.get("group")
        name = None
        if isinstance(group, dict) and group.get("name"):
            name = str(group["name"])
        elif trigger.get("value"):
            name = str(trigger["value"])
        event_id = trigger.get("eventId")
        return PersonInfo(name=name, event_id=str(event_id) if event_id else None)
    return None


def extract_event_id(alarm: Dict[str, Any]) -> Optional[str]:
    for trigger in _dicts(alarm.get("triggers")):
        if trigger.get("eventId"):
            return str(trigger["eventId"])
    return None


def summarize_conditions(alarm: Dict[str, Any]) -> Optional[str]:
    conditions = alarm.get("conditions")
    if not isinstance(conditions, list) or not conditions:
        return None
    out = []
    for cond in conditions:
        inner = cond.get("condition") if isinstance(cond, dict) else None
        if not isinstance(inner, dict):
            out.append(UNKNOWN)
            continue
        out.append(f"{inner.get('source') or UNKNOWN} ({inner.get('type') or UNKNOWN})")
    return ", ".join(out)


def normalize_timestamp(value: Any, now: Optional[datetime] = None) -> Union[datetime, str]:
    """Numbers are epoch milliseconds; strings pass through untouched."""
    if isinstance(value, bool):
        value = None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            # out of range, inf or nan
            LOG.warning("[EVENT] unusable timestamp %r, using now", value)
            return now or datetime.now(timezone.utc)
    if isinstance(value, str) and value:
        return value
    return now or datetime.now(timezone.utc)


# -------------------- Normalizer --------------------

def _normalize_alarm(p: AlarmPayload) -> NormalizedEvent:
    alarm = p.alarm
    person = extract_person_info(alarm)
    event_id = (person.event_id if person else None) or extract_event_id(alarm)
    name = alarm.get("name")
    return NormalizedEvent(
        event_type=extract_event_type(alarm),
        camera_or_device_label=extract_device_info(alarm),
        person_name=person.name if person else None,
        event_id=event_id,
        timestamp=normalize_timestamp(p.timestamp),
        conditions_summary=summarize_conditions(alarm),
        title_hint=str(name) if name else None,
    )


def _normalize_flat(p: FlatPayload) -> NormalizedEvent:
    label = p.cameraName or None
    if label and p.location:
        label = f"{label} ({p.location})"
    elif p.location:
        label = p.location
    event_id = getattr(p, "eventId", None)
    return NormalizedEvent(
        event_type=(p.eventType or "").strip().lower() or UNKNOWN,
        camera_or_device_label=label,
        event_id=str(event_id) if event_id else None,
        timestamp=normalize_timestamp(p.timestamp),
        description=p.description or None,
        title_hint=p.description or p.cameraName or None,
    )


def normalize(payload: RawEventPayload) -> NormalizedEvent:
    if isinstance(payload, AlarmPayload):
        return _normalize_alarm(payload)
    return _normalize_flat(payload)


def normalize_event_metadata(meta: Dict[str, Any]) -> NormalizedEvent:
    """Build an event from a Protect ``/api/events/{id}`` record."""
    event_type = None
    smart = meta.get("smartDetectTypes")
    if isinstance(smart, list):
        for t in smart:
            if isinstance(t, str) and t.lower() in EVENT_KEYWORDS:
                event_type = t.lower()
                break
    if not event_type:
        raw_type = meta.get("type")
        event_type = raw_type.lower() if isinstance(raw_type, str) and raw_type else UNKNOWN

    camera = meta.get("camera")
    if isinstance(camera, dict):
        label = camera.get("name") or camera.get("id")
    else:
        label = camera if isinstance(camera, str) else None

    event_id = meta.get("id")
    return NormalizedEvent(
        event_type=event_type,
        camera_or_device_label=str(label) if label else "Unknown Camera",
        event_id=str(event_id) if event_id else None,
        timestamp=normalize_timestamp(meta.get("start")),
        description=meta.get("description") if isinstance(meta.get("description"), str) else None,
        title_hint=f"{meta.get('type') or 'Event'} on {label or 'Unknown Camera'}",
    )
