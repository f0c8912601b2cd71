"""
Schema resolution for inbound Avro events.

An event names its schema either inline (literal header) or by fingerprint
plus the path of the Avro container the upstream writer is producing. The
upstream writer renames finished files to '<file>.COMPLETED', possibly while
we are reading, so both names are probed and the read is retried.
"""

import json
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import fastavro
import structlog
from fastavro.schema import SchemaParseException

from ..config import SchemaSettings
from .exceptions import SchemaUnavailableError
from .metrics import MetricsCollector

logger = structlog.get_logger(__name__)

LITERAL_HEADERS = ("flume.avro.schema.literal", "schema.literal")
FINGERPRINT_HEADERS = ("flume.avro.schema.hash", "schema.hash")
FILE_HEADER = "file"

SOURCE_FILE_PREFIX = "sessions-warehouseconnector-"
TIMESTAMP_MARKER = "-TS"


@dataclass(frozen=True)
class FieldSpec:
    """A record field as declared by the schema."""
    name: str
    type: Any

    @property
    def is_boolean(self) -> bool:
        if isinstance(self.type, list):
            return "boolean" in self.type
        if isinstance(self.type, dict):
            return self.type.get("type") == "boolean"
        return self.type == "boolean"


@dataclass(frozen=True)
class SchemaCacheEntry:
    """Fingerprint and schema, always replaced together."""
    fingerprint: str
    schema: Dict[str, Any]
    source_name: Optional[str]


@dataclass(frozen=True)
class ResolvedSchema:
    """Schema ready for decoding one event."""
    schema: Any
    fields: Tuple[FieldSpec, ...]
    fingerprint: Optional[str] = None
    source_name: Optional[str] = None


def derive_source_name(file_path: str) -> Optional[str]:
    """
    Get the decoder name out of a warehouse connector file name.

    sessions-warehouseconnector-eb-rng-aptdec1-es-34835-1425401857360-TS2015-3-3-14-23TE.avro
    yields 'eb-rng-aptdec1': everything after the prefix up to the third
    hyphen before the last '-TS' marker.
    """
    start = file_path.find(SOURCE_FILE_PREFIX)
    end = file_path.rfind(TIMESTAMP_MARKER)
    if start < 0 or end < 0:
        return None

    for _ in range(3):
        end = file_path.rfind("-", 0, end)
        if end < 0:
            return None

    start += len(SOURCE_FILE_PREFIX)
    if end < start:
        return None
    return file_path[start:end]


def schema_fields(schema: Any) -> Tuple[FieldSpec, ...]:
    """Declared record fields in schema order (empty for non-record schemas)."""
    if not isinstance(schema, dict):
        return ()
    return tuple(
        FieldSpec(name=field["name"], type=field.get("type"))
        for field in schema.get("fields", [])
    )


def _first_header(headers: Mapping[str, str], names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        if name in headers:
            return headers[name]
    return None


class SchemaCache:
    """
    Fingerprint-keyed schema cache with least-recently-used eviction.

    With max_entries=1 this is a single slot: a new fingerprint evicts the
    previous one. Entries are immutable, so a reader sees either the old or
    the new fingerprint/schema pair, never a mix.
    """

    def __init__(self, max_entries: int = 1) -> None:
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, SchemaCacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> Optional[SchemaCacheEntry]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None:
                self._entries.move_to_end(fingerprint)
            return entry

    def put(self, entry: SchemaCacheEntry) -> None:
        with self._lock:
            self._entries[entry.fingerprint] = entry
            self._entries.move_to_end(entry.fingerprint)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def fingerprints(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SchemaResolver:
    """
    Resolves the schema of an inbound event.

    - literal header: parsed on every call, the cache is not touched
    - fingerprint header: served from the cache, or read from the backing
      container with a bounded retry and cached on success
    """

    def __init__(
        self,
        read_attempts: int = 10,
        retry_interval_seconds: float = 0.1,
        completed_suffix: str = ".COMPLETED",
        cache_size: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.read_attempts = read_attempts
        self.retry_interval_seconds = retry_interval_seconds
        self.completed_suffix = completed_suffix
        self.cache = SchemaCache(max_entries=cache_size)
        self.metrics = metrics
        self._sleep = sleep

        logger.info(
            "Schema resolver initialized",
            read_attempts=read_attempts,
            retry_interval_seconds=retry_interval_seconds,
            cache_size=cache_size,
        )

    @classmethod
    def from_settings(
        cls,
        settings: SchemaSettings,
        metrics: Optional[MetricsCollector] = None,
    ) -> "SchemaResolver":
        return cls(
            read_attempts=settings.read_attempts,
            retry_interval_seconds=settings.retry_interval_seconds,
            completed_suffix=settings.completed_suffix,
            cache_size=settings.cache_size,
            metrics=metrics,
        )

    def resolve(self, headers: Mapping[str, str]) -> ResolvedSchema:
        """
        Get the schema for an event from its headers.

        Raises SchemaUnavailableError when no schema can be produced.
        """
        file_path = headers.get(FILE_HEADER)
        source_name = derive_source_name(file_path) if file_path else None

        literal = _first_header(headers, LITERAL_HEADERS)
        if literal is not None:
            schema = self.parse_literal(literal)
            return ResolvedSchema(
                schema=schema,
                fields=schema_fields(schema),
                source_name=source_name,
            )

        fingerprint = _first_header(headers, FINGERPRINT_HEADERS)
        if fingerprint is None:
            raise SchemaUnavailableError("Event carries neither a schema literal nor a schema hash")

        entry = self.cache.get(fingerprint)
        if entry is not None:
            if self.metrics:
                self.metrics.record_schema_cache_hit()
            return ResolvedSchema(
                schema=entry.schema,
                fields=schema_fields(entry.schema),
                fingerprint=fingerprint,
                source_name=source_name if file_path else entry.source_name,
            )

        if not file_path:
            raise SchemaUnavailableError(
                "Schema hash given without a backing file",
                details={"fingerprint": fingerprint},
            )

        schema = self._read_with_retry(file_path)
        self.cache.put(SchemaCacheEntry(
            fingerprint=fingerprint,
            schema=schema,
            source_name=source_name,
        ))
        logger.debug("Cached schema", fingerprint=fingerprint, source=source_name)

        return ResolvedSchema(
            schema=schema,
            fields=schema_fields(schema),
            fingerprint=fingerprint,
            source_name=source_name,
        )

    def parse_literal(self, literal: str) -> Dict[str, Any]:
        """Parse an inline schema literal."""
        try:
            return fastavro.parse_schema(json.loads(literal))
        except (ValueError, TypeError, KeyError, SchemaParseException) as e:
            raise SchemaUnavailableError(
                "Cannot parse schema literal",
                details={"error": str(e)},
            )

    def _read_with_retry(self, file_path: str) -> Dict[str, Any]:
        # The writer may rename the file between our exists() check and open()
        last_error: Optional[Exception] = None
        for attempt in range(1, self.read_attempts + 1):
            try:
                return self._read_schema_file(file_path)
            except (OSError, EOFError, ValueError, SchemaParseException) as e:
                last_error = e
                logger.warning(
                    "Error getting schema from file",
                    file=file_path,
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            if attempt < self.read_attempts:
                self._sleep(self.retry_interval_seconds)

        logger.error(
            "Couldn't get a valid schema",
            file=file_path,
            attempts=self.read_attempts,
        )
        raise SchemaUnavailableError(
            "Schema file unavailable",
            details={
                "file": file_path,
                "attempts": self.read_attempts,
                "error": str(last_error),
            },
        )

    def _read_schema_file(self, file_path: str) -> Dict[str, Any]:
        """Read the schema from the container header; no records are read."""
        path = file_path
        if not os.path.exists(path):
            path = file_path + self.completed_suffix

        logger.debug("Using file", file=path)
        if self.metrics:
            self.metrics.record_schema_read()

        with open(path, "rb") as fo:
            avro_reader = fastavro.reader(fo)
            return avro_reader.writer_schema
