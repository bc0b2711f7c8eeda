# formatter.py — NormalizedEvent -> Discord message
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from events import NormalizedEvent
from unifi import ThumbnailArtifact

EMBED_TITLE = "UniFi Protect Alert"
DESCRIPTION_LIMIT = 4096
FIELD_VALUE_LIMIT = 1024

RED, YELLOW, BLUE, CYAN, GREEN, PURPLE = 15158332, 16776960, 3447003, 7419530, 5763719, 10181046


class EventStyle(NamedTuple):
    emoji: str
    title: str
    color: int


EVENT_STYLES: Dict[str, EventStyle] = {
    "motion":       EventStyle("🚨", "Motion Detected", RED),
    "alert":        EventStyle("⚠️", "Alert Triggered", YELLOW),
    "person":       EventStyle("👤", "Person Detected", BLUE),
    "vehicle":      EventStyle("🚗", "Vehicle Detected", CYAN),
    "package":      EventStyle("📦", "Package Detected", GREEN),
    "face_known":   EventStyle("👤", "Known Person Detected", BLUE),
    "face_unknown": EventStyle("👤", "Unknown Person Detected", YELLOW),
}
FALLBACK_STYLE = EventStyle("🔔", "Event Detected", PURPLE)


def style_for(event_type: str) -> EventStyle:
    return EVENT_STYLES.get((event_type or "").lower(), FALLBACK_STYLE)


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def iso_timestamp(ts: Any) -> str:
    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return str(ts)


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value, "inline": self.inline}


@dataclass(frozen=True)
class OutboundMessage:
    content: str
    title: str
    description: str
    color: int
    timestamp: Optional[str] = None
    fields: Tuple[EmbedField, ...] = field(default_factory=tuple)
    attachment: Optional[ThumbnailArtifact] = None

    def to_discord_payload(self) -> Dict[str, Any]:
        embed: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "color": self.color,
        }
        if self.timestamp:
            embed["timestamp"] = self.timestamp
        embed["fields"] = [f.to_dict() for f in self.fields]
        return {"content": self.content, "embeds": [embed]}

    def to_json(self) -> str:
        return json.dumps(self.to_discord_payload(), ensure_ascii=False)


def build_fields(event: NormalizedEvent) -> List[EmbedField]:
    candidates = [
        ("Event Type", event.event_type, True),
        ("Person", event.person_name, True),
        ("Device", event.camera_or_device_label, True),
        ("Event ID", event.event_id, True),
        ("Conditions", event.conditions_summary, False),
    ]
    return [
        EmbedField(name, truncate(str(value), FIELD_VALUE_LIMIT), inline)
        for name, value, inline in candidates
        if value
    ]


def format_message(event: NormalizedEvent,
                   thumbnail: Optional[ThumbnailArtifact] = None) -> OutboundMessage:
    style = style_for(event.event_type)
    description = event.title_hint or event.description or "Unknown Alarm"
    if event.description and event.title_hint and event.description != event.title_hint:
        description = f"{event.title_hint}\n{event.description}"
    return OutboundMessage(
        content=f"{style.emoji} **{style.title}**",
        title=EMBED_TITLE,
        description=truncate(description, DESCRIPTION_LIMIT),
        color=style.color,
        timestamp=iso_timestamp(event.timestamp),
        fields=tuple(build_fields(event)),
        attachment=thumbnail,
    )
