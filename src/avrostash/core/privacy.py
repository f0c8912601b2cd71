"""
Filter for events carrying private (RFC 1918 / site-local) addresses.

Runs over whole batches before projection. Every doubt about an individual
event (undecodable body, missing or unparsable addresses) keeps the event.
"""

from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address, ip_address, ip_network
from typing import Any, List, Optional, Union

import structlog

from .decoder import DecodedRecord, RecordDecoder
from .event import InboundEvent
from .exceptions import DecodeError, SchemaUnavailableError
from .metrics import MetricsCollector
from .policy import ConfigStore
from .schema import SchemaResolver

logger = structlog.get_logger(__name__)

MEDIUM_FIELD = "medium"
SOURCE_ADDRESS_FIELD = "ip_src"
DESTINATION_ADDRESS_FIELD = "ip_dst"

DROP_PRIVATE_ADDRESS = "private_address"
DROP_SCHEMA_UNAVAILABLE = "schema_unavailable"

# Medium of sessions captured on the loopback/internal interface
LOOPBACK_MEDIUM = 32

SITE_LOCAL_NETWORKS = tuple(
    ip_network(network)
    for network in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fec0::/10")
)

Address = Union[IPv4Address, IPv6Address]


@dataclass
class FilterResult:
    """Survivors of a batch and how many events were dropped for each reason."""
    kept: List[InboundEvent] = field(default_factory=list)
    private_addresses: int = 0
    unresolvable: int = 0


def parse_address(value: Any) -> Address:
    """Parse a textual or packed (4/16 byte) address. Raises ValueError."""
    if isinstance(value, bytes):
        if len(value) in (4, 16):
            return ip_address(value)
        value = value.decode("ascii", errors="replace")
    return ip_address(str(value).strip())


def is_site_local(address: Address) -> bool:
    if isinstance(address, IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return any(address in network for network in SITE_LOCAL_NETWORKS)


def _is_loopback_medium(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return int(value) == LOOPBACK_MEDIUM
    except (TypeError, ValueError):
        return False


class PrivacyFilter:
    """
    Drops events whose source or destination address is site-local.

    Only active when the policy enables it (IgnoreRFC1918).
    """

    def __init__(
        self,
        config: ConfigStore,
        resolver: SchemaResolver,
        decoder: Optional[RecordDecoder] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.decoder = decoder or RecordDecoder()
        self.metrics = metrics
        logger.info("Privacy filter initialized", enabled=self.enabled)

    @property
    def enabled(self) -> bool:
        return self.config.ignore_private_addresses

    def should_drop_record(self, decoded: DecodedRecord) -> bool:
        """Decision for an already decoded event."""
        if not self.enabled:
            return False

        if _is_loopback_medium(decoded.get(MEDIUM_FIELD)):
            return False

        src = decoded.get(SOURCE_ADDRESS_FIELD)
        dst = decoded.get(DESTINATION_ADDRESS_FIELD)
        if src is None and dst is None:
            return False

        # An absent address is never private; only present ones are parsed,
        # so a private ip_dst drops the event even when ip_src is missing.
        try:
            addresses = [parse_address(value) for value in (src, dst) if value is not None]
        except ValueError as e:
            logger.debug("Keeping event with unparsable address", error=str(e))
            return False

        return any(is_site_local(address) for address in addresses)

    def drop_reason(self, event: InboundEvent) -> Optional[str]:
        """
        Reason the event must be dropped, or None to keep it.

        An event whose schema cannot be resolved is dropped, since it could
        not be projected either. Decoding errors keep the event.
        """
        if not self.enabled:
            return None

        try:
            resolved = self.resolver.resolve(event.headers)
        except SchemaUnavailableError as e:
            logger.error("Couldn't get a valid schema, dropping event", error=str(e), details=e.details)
            return self._dropped(DROP_SCHEMA_UNAVAILABLE)

        try:
            decoded = self.decoder.decode(resolved, event.body)
        except DecodeError as e:
            logger.debug("Keeping undecodable event", error=str(e), reason=e.reason)
            return None

        if self.should_drop_record(decoded):
            return self._dropped(DROP_PRIVATE_ADDRESS)
        return None

    def should_drop(self, event: InboundEvent) -> bool:
        return self.drop_reason(event) is not None

    def partition(self, events: List[InboundEvent]) -> FilterResult:
        """Split a batch into survivors and per-reason drop counts, keeping order."""
        result = FilterResult()
        if not self.enabled:
            result.kept = list(events)
            return result

        for event in events:
            reason = self.drop_reason(event)
            if reason is None:
                result.kept.append(event)
            elif reason == DROP_PRIVATE_ADDRESS:
                result.private_addresses += 1
            else:
                result.unresolvable += 1

        removed = len(events) - len(result.kept)
        if removed > 0:
            logger.debug(
                "Dropped events",
                private_addresses=result.private_addresses,
                unresolvable=result.unresolvable,
                received=len(events),
            )

        return result

    def filter(self, events: List[InboundEvent]) -> List[InboundEvent]:
        """Remove dropped events, keeping the order of the survivors."""
        return self.partition(events).kept

    def _dropped(self, reason: str) -> str:
        if self.metrics:
            self.metrics.record_dropped(reason)
        return reason
