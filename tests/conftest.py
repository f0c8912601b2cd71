"""
Pytest configuration and shared fixtures.

Contains the session schema, Avro encoding helpers and component fixtures
shared by all test modules.
"""

import io
import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List

import fastavro
import pytest
from prometheus_client import CollectorRegistry

from avrostash.core.decoder import DecodedRecord
from avrostash.core.metrics import MetricsCollector
from avrostash.core.policy import ConfigStore
from avrostash.core.schema import SchemaResolver, schema_fields

SESSION_FILE_NAME = (
    "sessions-warehouseconnector-eb-rng-aptdec1-es-34835-1425401857360-TS2015-3-3-14-23TE.avro"
)


def _nullable(name: str, avro_type: str) -> Dict[str, Any]:
    return {"name": name, "type": ["null", avro_type], "default": None}


SESSION_SCHEMA: Dict[str, Any] = {
    "type": "record",
    "name": "session",
    "namespace": "com.rsa.netwitness",
    "fields": [
        _nullable("time", "long"),
        _nullable("event_time", "long"),
        _nullable("device_type", "string"),
        _nullable("ip_src", "string"),
        _nullable("ip_dst", "string"),
        _nullable("medium", "int"),
        _nullable("latdec_src", "double"),
        _nullable("longdec_src", "double"),
        _nullable("latdec_dst", "double"),
        _nullable("longdec_dst", "double"),
        _nullable("alert", "string"),
        _nullable("has_payload", "boolean"),
        _nullable("ng_source", "string"),
    ],
}


def encode_record(record: Dict[str, Any], schema: Dict[str, Any] = SESSION_SCHEMA) -> bytes:
    """Avro binary body for one record, as the pipeline delivers it."""
    buffer = io.BytesIO()
    fastavro.schemaless_writer(buffer, fastavro.parse_schema(schema), record)
    return buffer.getvalue()


def write_container(
    path: Path,
    records: Iterable[Dict[str, Any]] = (),
    schema: Dict[str, Any] = SESSION_SCHEMA,
) -> Path:
    """Write an Avro object container file with the given schema."""
    with open(path, "wb") as fo:
        fastavro.writer(fo, fastavro.parse_schema(schema), list(records))
    return path


def literal_headers(schema: Dict[str, Any] = SESSION_SCHEMA) -> Dict[str, str]:
    return {"flume.avro.schema.literal": json.dumps(schema)}


def session_record(**values: Any) -> DecodedRecord:
    """Decoded session event; fields not given are null."""
    fields = schema_fields(SESSION_SCHEMA)
    full: Dict[str, Any] = {spec.name: None for spec in fields}
    full.update(values)
    return DecodedRecord(values=full, fields=fields)


@pytest.fixture
def session_schema() -> Dict[str, Any]:
    return SESSION_SCHEMA


@pytest.fixture
def session_file(tmp_path: Path) -> Path:
    """Backing container file named like the warehouse connector names them."""
    return write_container(tmp_path / SESSION_FILE_NAME)


@pytest.fixture
def sleeps() -> List[float]:
    """Records every wait of the schema resolver instead of sleeping."""
    return []


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    return MetricsCollector(registry)


@pytest.fixture
def resolver(sleeps: List[float], metrics: MetricsCollector) -> SchemaResolver:
    return SchemaResolver(sleep=sleeps.append, metrics=metrics)


@pytest.fixture
def make_config() -> Callable[..., ConfigStore]:
    """Factory for policy stores; includes every field unless told otherwise."""
    def _make(**overrides: Any) -> ConfigStore:
        options: Dict[str, Any] = {"included_fields": {"*": ["*"]}}
        options.update(overrides)
        return ConfigStore(**options)

    return _make


@pytest.fixture
def policy_yaml(tmp_path: Path) -> Path:
    """Policy tables in YAML form."""
    path = tmp_path / "policy.yaml"
    path.write_text(
        """
exclude:
  - decoders: "*"
    fields: [payload, did]
  - decoders: eb-gb-aptlog1
    fields: [alert]
include:
  - decoders: "*"
    include_all: true
  - decoders: [eb-rng-aptdec1]
    fields: [ip_src, ip_dst, alert, time, event_time, device_type]
truncate:
  alert: 8
time_correction:
  rsaenvision: 2
  ciscoasa: -1
ignore_rfc1918: true
kibana_version: 4
"""
    )
    return path


@pytest.fixture
def policy_xml(tmp_path: Path) -> Path:
    """Policy tables in the legacy XML layout."""
    path = tmp_path / "FlumeAvroEventDeserializer.xml"
    path.write_text(
        """<?xml version="1.0" encoding="UTF-8"?>
<configuration>
  <Exclude Decoder="*">
    <Field>payload</Field>
  </Exclude>
  <Exclude Decoder="eb-rng-aptdec1,eb-gb-aptlog1">
    <Field>alert</Field>
    <Field>did</Field>
  </Exclude>
  <Include Decoder="*" IncludeAllFields="1"/>
  <Include Decoder="eb-gb-aptlog1" IncludeAllFields="0">
    <Field>ip_src</Field>
    <Field>alert</Field>
  </Include>
  <TimeCorrection>
    <Device name="rsaenvision" correction="-2"/>
  </TimeCorrection>
  <Truncate>
    <Field name="alert" length="16"/>
  </Truncate>
  <IgnoreRFC1918>All</IgnoreRFC1918>
  <KibanaVersion>3</KibanaVersion>
</configuration>
"""
    )
    return path


@pytest.fixture
def encode() -> Callable[..., bytes]:
    return encode_record


@pytest.fixture
def write_avro() -> Callable[..., Path]:
    return write_container


@pytest.fixture
def literal() -> Callable[..., Dict[str, str]]:
    return literal_headers
