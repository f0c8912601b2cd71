"""
Policy tables for document projection.

The ConfigStore holds the per-source include/exclude rules, truncation
lengths, device time corrections and the output switches. It is built once
at startup and never mutated afterwards.

Two table formats are understood:
- YAML, validated with the PolicyTables model
- the legacy XML layout (/configuration/Exclude, /configuration/Include, ...)
"""

import csv
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union
from xml.etree import ElementTree

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

WILDCARD = "*"
DEFAULT_OUTPUT_FORMAT_VERSION = 3


class PolicyRule(BaseModel):
    """Field list applied to one or more decoders."""

    decoders: List[str] = Field(description="Decoder names, or '*' for all unconfigured decoders")
    fields: List[str] = Field(default_factory=list, description="Field names the rule applies to")
    include_all: bool = Field(default=False, description="Include every field (include rules only)")

    @field_validator("decoders", mode="before")
    def split_decoders(cls, v: Any) -> List[str]:
        """Accept the comma separated form used by the XML layout."""
        if isinstance(v, str):
            v = v.split(",")
        return [name.strip() for name in v if name and name.strip()]


class PolicyTables(BaseModel):
    """Raw policy tables as read from the configuration file."""

    exclude: List[PolicyRule] = Field(default_factory=list)
    include: List[PolicyRule] = Field(default_factory=list)
    truncate: Dict[str, int] = Field(default_factory=dict, description="Field name -> max characters")
    time_correction: Dict[str, int] = Field(default_factory=dict, description="Device type -> hours")
    ignore_rfc1918: bool = Field(default=False, description="Drop events with private addresses")
    kibana_version: int = Field(default=DEFAULT_OUTPUT_FORMAT_VERSION, description="Geo output format switch")

    @field_validator("truncate")
    def validate_truncate(cls, v: Dict[str, int]) -> Dict[str, int]:
        for field_name, length in v.items():
            if length < 0:
                raise ValueError(f"Truncation length for '{field_name}' must not be negative")
        return v


class ConfigStore:
    """
    Read-only view over the policy tables.

    Lookups for a decoder without its own rule fall back to the wildcard
    rule; without either the result is empty. Inclusion and exclusion use
    the same fallback.
    """

    def __init__(
        self,
        excluded_fields: Optional[Mapping[str, Iterable[str]]] = None,
        included_fields: Optional[Mapping[str, Iterable[str]]] = None,
        truncation: Optional[Mapping[str, int]] = None,
        time_corrections: Optional[Mapping[str, int]] = None,
        ignore_private_addresses: bool = False,
        output_format_version: int = DEFAULT_OUTPUT_FORMAT_VERSION,
        country_map: Optional[Mapping[str, str]] = None,
        loaded: bool = True,
    ) -> None:
        self._excluded = MappingProxyType(
            {name: frozenset(fields) for name, fields in (excluded_fields or {}).items()}
        )
        self._included = MappingProxyType(
            {name: frozenset(fields) for name, fields in (included_fields or {}).items()}
        )
        self._truncation = MappingProxyType(dict(truncation or {}))
        self._time_corrections = MappingProxyType(dict(time_corrections or {}))
        self._ignore_private_addresses = ignore_private_addresses
        self._output_format_version = output_format_version
        self._country_map = MappingProxyType(dict(country_map or {}))
        self._loaded = loaded

    @classmethod
    def defaults(cls) -> "ConfigStore":
        """Conservative store used when the configuration cannot be read."""
        return cls(loaded=False)

    @classmethod
    def from_tables(
        cls,
        tables: PolicyTables,
        country_map: Optional[Mapping[str, str]] = None,
    ) -> "ConfigStore":
        """Build a store from validated tables; later rules replace earlier ones per decoder."""
        excluded: Dict[str, FrozenSet[str]] = {}
        for rule in tables.exclude:
            for decoder in rule.decoders:
                excluded[decoder] = frozenset(rule.fields)

        included: Dict[str, FrozenSet[str]] = {}
        for rule in tables.include:
            fields = frozenset([WILDCARD]) if rule.include_all else frozenset(rule.fields)
            for decoder in rule.decoders:
                included[decoder] = fields

        return cls(
            excluded_fields=excluded,
            included_fields=included,
            truncation=tables.truncate,
            time_corrections=tables.time_correction,
            ignore_private_addresses=tables.ignore_rfc1918,
            output_format_version=tables.kibana_version,
            country_map=country_map,
        )

    def _lookup(self, table: Mapping[str, FrozenSet[str]], source_name: str) -> FrozenSet[str]:
        if source_name in table:
            return table[source_name]
        return table.get(WILDCARD, frozenset())

    def excluded_fields(self, source_name: str) -> FrozenSet[str]:
        return self._lookup(self._excluded, source_name)

    def included_fields(self, source_name: str) -> FrozenSet[str]:
        return self._lookup(self._included, source_name)

    def truncation_length(self, field_name: str) -> Optional[int]:
        return self._truncation.get(field_name)

    def time_correction(self, device_type: str) -> Optional[int]:
        return self._time_corrections.get(device_type)

    @property
    def ignore_private_addresses(self) -> bool:
        return self._ignore_private_addresses

    @property
    def output_format_version(self) -> int:
        return self._output_format_version

    @property
    def country_map(self) -> Mapping[str, str]:
        """Netwitness to Kibana country names. Loaded but not used by the projection."""
        return self._country_map

    @property
    def loaded(self) -> bool:
        """False when the store fell back to defaults."""
        return self._loaded


def _xml_rules(root: ElementTree.Element, tag: str) -> List[PolicyRule]:
    rules = []
    for node in root.findall(tag):
        include_all = node.get("IncludeAllFields", "") == "1"
        fields = [] if include_all else [
            (field.text or "").strip() for field in node.iter("Field")
        ]
        rules.append(PolicyRule(
            decoders=node.get("Decoder", ""),
            fields=[name for name in fields if name],
            include_all=include_all,
        ))
    return rules


def parse_legacy_xml(xml_text: Union[str, bytes]) -> PolicyTables:
    """
    Parse the legacy XML policy layout.

    <configuration>
      <Exclude Decoder="*"><Field>payload</Field></Exclude>
      <Include Decoder="eb-rng-aptdec1,eb-gb-aptlog1" IncludeAllFields="1"/>
      <TimeCorrection><Device name="rsaenvision" correction="-2"/></TimeCorrection>
      <Truncate><Field name="alert" length="256"/></Truncate>
      <IgnoreRFC1918>All</IgnoreRFC1918>
      <KibanaVersion>4</KibanaVersion>
    </configuration>
    """
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as e:
        raise ConfigurationError("Policy XML is not well formed", details={"error": str(e)})

    if root.tag != "configuration":
        raise ConfigurationError(
            "Unexpected root element in policy XML",
            details={"root": root.tag},
        )

    try:
        time_correction = {
            device.get("name", ""): int(device.get("correction", "0"))
            for device in root.findall("TimeCorrection/Device")
        }
        truncate = {
            field.get("name", ""): int(field.get("length", "0"))
            for field in root.findall("Truncate/Field")
        }
        kibana_version = (root.findtext("KibanaVersion") or "").strip()

        return PolicyTables(
            exclude=_xml_rules(root, "Exclude"),
            include=_xml_rules(root, "Include"),
            truncate=truncate,
            time_correction=time_correction,
            ignore_rfc1918=(root.findtext("IgnoreRFC1918") or "").strip() == "All",
            kibana_version=int(kibana_version) if kibana_version else DEFAULT_OUTPUT_FORMAT_VERSION,
        )
    except (ValueError, ValidationError) as e:
        raise ConfigurationError("Invalid value in policy XML", details={"error": str(e)})


def load_policy_tables(path: Path) -> PolicyTables:
    """Read policy tables from a YAML or legacy XML file."""
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            "Cannot read policy file",
            details={"path": str(path), "error": str(e)},
        )

    if path.suffix.lower() == ".xml":
        return parse_legacy_xml(raw)

    try:
        data = yaml.safe_load(raw) or {}
        return PolicyTables.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigurationError(
            "Invalid policy file",
            details={"path": str(path), "error": str(e)},
        )


def load_country_map(path: Path) -> Dict[str, str]:
    """Read the 'netwitness;kibana' country mapping. A missing file is an empty map."""
    country_map: Dict[str, str] = {}
    if not path.exists():
        return country_map

    with open(path, newline="", encoding="utf-8") as f:
        for line_number, row in enumerate(csv.reader(f, delimiter=";"), start=1):
            if not row:
                continue
            if len(row) < 2:
                logger.warning("Skipping malformed country mapping", path=str(path), line=line_number)
                continue
            country_map[row[0]] = row[1]

    logger.info("Read country mapping", path=str(path), countries=len(country_map))
    return country_map


def load_config_store(policy_file: Path, country_map_file: Optional[Path] = None) -> ConfigStore:
    """
    Build the ConfigStore for the process.

    Never raises: on failure the conservative defaults are returned and the
    error is logged.
    """
    logger.info("Reading policy configuration", path=str(policy_file))
    try:
        tables = load_policy_tables(policy_file)
    except ConfigurationError as e:
        logger.error(
            "Error reading policy configuration, using defaults",
            error=str(e),
            details=e.details,
        )
        return ConfigStore.defaults()

    country_map: Dict[str, str] = {}
    if country_map_file is not None:
        try:
            country_map = load_country_map(country_map_file)
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.error("Error reading country mapping", path=str(country_map_file), error=str(e))

    if tables.ignore_rfc1918:
        logger.info("Ignoring RFC 1918 addresses as per configuration")

    store = ConfigStore.from_tables(tables, country_map=country_map)
    logger.info(
        "Finished reading policy configuration",
        exclude_rules=len(tables.exclude),
        include_rules=len(tables.include),
        truncated_fields=len(tables.truncate),
        time_corrections=len(tables.time_correction),
        output_format_version=store.output_format_version,
    )
    return store
