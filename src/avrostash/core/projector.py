"""
Projection of decoded events into Logstash formatted documents.

    {
       "@fields": {"ip_src": "10.1.2.3", "device_type": "rsaenvision", ...},
       "location_src": [13.4, 52.5],
       "@timestamp": "2015-03-03T14:23:00.000+0000",
       "@source": "eb-rng-aptdec1"
    }

Kibana 3 expects geo points as [lon, lat] pairs, later versions as
{"lat": .., "lon": ..} objects; output_format_version selects the shape.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from .decoder import DecodedRecord
from .policy import WILDCARD, ConfigStore

logger = structlog.get_logger(__name__)

SOURCE_FIELD = "ng_source"
TIME_FIELD = "time"
EVENT_TIME_FIELD = "event_time"
DEVICE_TYPE_FIELD = "device_type"

# Field name prefix -> (direction, coordinate)
GEO_PREFIXES = (
    ("latdec_src", "src", "lat"),
    ("latdec_dst", "dst", "lat"),
    ("longdec_src", "src", "lon"),
    ("longdec_dst", "dst", "lon"),
)

BOOLEAN_ENCODINGS = {"T": "true", "F": "false"}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

GeoValue = Union[List[float], Dict[str, float]]


@dataclass
class GeoPoint:
    """Coordinates collected for one direction; both halves are needed."""
    lat: Optional[str] = None
    lon: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclass
class ProjectedDocument:
    """Output document for one event."""
    fields: Dict[str, Any]
    source: str
    timestamp: Optional[str] = None
    location_src: Optional[GeoValue] = None
    location_dst: Optional[GeoValue] = None

    def to_dict(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {"@fields": self.fields}
        if self.location_src is not None:
            document["location_src"] = self.location_src
        if self.location_dst is not None:
            document["location_dst"] = self.location_dst
        if self.timestamp is not None:
            document["@timestamp"] = self.timestamp
        document["@source"] = self.source
        return document


def stringify(value: Any) -> str:
    """String form of a decoded Avro value."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def truncate(value: str, length: Optional[int]) -> str:
    """Clip to at most length characters; never pads."""
    if length is None:
        return value
    return value[:max(length, 0)]


def normalize_boolean(value: str) -> str:
    return BOOLEAN_ENCODINGS.get(value, value)


def format_timestamp(epoch_seconds: int) -> str:
    """ISO-8601 UTC with millisecond precision and numeric offset."""
    moment = _EPOCH + timedelta(milliseconds=epoch_seconds * 1000)
    return "{}.{:03d}{}".format(
        moment.strftime("%Y-%m-%dT%H:%M:%S"),
        moment.microsecond // 1000,
        moment.strftime("%z"),
    )


def _field_value(text: str) -> Any:
    # A value holding a JSON object is embedded as an object
    if text.lstrip().startswith("{"):
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        if isinstance(parsed, dict):
            return parsed
    return text


def _parse_epoch(field_name: str, value: Any) -> Optional[int]:
    if isinstance(value, bool):
        value = stringify(value)
    if isinstance(value, int):
        return value
    try:
        return int(stringify(value).strip())
    except ValueError:
        logger.warning("Ignoring non-numeric time field", field=field_name, value=stringify(value)[:64])
        return None


class DocumentProjector:
    """
    Applies the per-source policy and field transforms to decoded events.
    """

    def __init__(self, config: ConfigStore) -> None:
        self.config = config
        logger.info(
            "Document projector initialized",
            output_format_version=config.output_format_version,
        )

    def resolve_source_name(self, decoded: DecodedRecord, fallback: Optional[str]) -> str:
        """The event's own ng_source when set, else the file derived name."""
        value = decoded.get(SOURCE_FIELD)
        if value is not None:
            name = stringify(value)
            if name:
                return name
        return fallback or ""

    def is_field_allowed(self, field_name: str, source_name: str) -> bool:
        """Exclusion wins over inclusion."""
        if field_name in self.config.excluded_fields(source_name):
            return False
        included = self.config.included_fields(source_name)
        return field_name in included or WILDCARD in included

    def project(self, decoded: DecodedRecord, source_name: Optional[str] = None) -> ProjectedDocument:
        """
        Build the document for one decoded event.

        Args:
            decoded: Field values and declarations of the event
            source_name: Decoder name derived from the backing file, used
                when the event has no ng_source of its own

        Returns:
            ProjectedDocument with @fields, geo points, @timestamp and @source
        """
        source = self.resolve_source_name(decoded, source_name)

        fields: Dict[str, Any] = {}
        geo = {"src": GeoPoint(), "dst": GeoPoint()}
        capture_time = 0
        event_time = 0
        device_type = ""

        for spec in decoded.fields:
            name = spec.name
            if not self.is_field_allowed(name, source):
                continue

            value = decoded.get(name)
            if value is None:
                continue

            # The timestamp is set after all fields are seen
            if name == TIME_FIELD:
                capture_time = _parse_epoch(name, value) or 0
                continue
            if name == EVENT_TIME_FIELD:
                event_time = _parse_epoch(name, value) or 0
                continue

            geo_slot = self._geo_slot(name)
            if geo_slot is not None:
                direction, coordinate = geo_slot
                setattr(geo[direction], coordinate, stringify(value))
                continue

            text = stringify(value)
            if name == DEVICE_TYPE_FIELD:
                device_type = text

            text = truncate(text, self.config.truncation_length(name))
            if spec.is_boolean:
                text = normalize_boolean(text)

            fields[name] = _field_value(text)

        return ProjectedDocument(
            fields=fields,
            source=source,
            timestamp=self._timestamp(decoded, capture_time, event_time, device_type),
            location_src=self._geo_value("location_src", geo["src"]),
            location_dst=self._geo_value("location_dst", geo["dst"]),
        )

    def _geo_slot(self, field_name: str) -> Optional[Tuple[str, str]]:
        for prefix, direction, coordinate in GEO_PREFIXES:
            if field_name.startswith(prefix):
                return direction, coordinate
        return None

    def _geo_value(self, name: str, point: GeoPoint) -> Optional[GeoValue]:
        if not point.complete:
            return None
        try:
            lat = float(point.lat)  # type: ignore[arg-type]
            lon = float(point.lon)  # type: ignore[arg-type]
        except ValueError:
            logger.warning("Ignoring invalid coordinates", field=name, lat=point.lat, lon=point.lon)
            return None

        if self.config.output_format_version > 3:
            return {"lat": lat, "lon": lon}
        return [lon, lat]

    def _timestamp(
        self,
        decoded: DecodedRecord,
        capture_time: int,
        event_time: int,
        device_type: str,
    ) -> Optional[str]:
        # event_time is the real time of the event, time is when it was captured
        if event_time > 0:
            correction = self.config.time_correction(device_type) or 0
            epoch_seconds: Optional[int] = event_time + correction * 3600
        elif capture_time > 0:
            epoch_seconds = capture_time
        else:
            raw_time = decoded.get(TIME_FIELD)
            epoch_seconds = _parse_epoch(TIME_FIELD, raw_time) if raw_time is not None else None

        if epoch_seconds is None:
            logger.warning("Event has no usable time, omitting @timestamp")
            return None

        try:
            return format_timestamp(epoch_seconds)
        except OverflowError:
            logger.warning("Event time out of range, omitting @timestamp", epoch_seconds=epoch_seconds)
            return None
