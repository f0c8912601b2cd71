"""
Processing pipeline for event batches.

Orchestrates:
1. Private address filtering over the batch
2. Schema resolution
3. Body decoding
4. Document projection

Per-event failures drop that event only; the batch always completes.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ..config import Settings
from .decoder import RecordDecoder
from .event import InboundEvent
from .exceptions import DecodeError, SchemaUnavailableError
from .metrics import MetricsCollector
from .policy import ConfigStore, load_config_store
from .privacy import PrivacyFilter
from .projector import DocumentProjector, ProjectedDocument
from .schema import SchemaResolver

logger = structlog.get_logger(__name__)


@dataclass
class ProcessingResult:
    """Result of processing a batch of events."""
    documents: List[Dict[str, Any]] = field(default_factory=list)
    events_received: int = 0
    events_filtered: int = 0
    events_dropped: int = 0
    processing_time_ms: float = 0.0


class ProcessingPipeline:
    """
    Main processing pipeline for event projection.

    Components are injected; from_settings() builds them in dependency
    order (ConfigStore, SchemaResolver, DocumentProjector, PrivacyFilter).
    """

    def __init__(
        self,
        config: ConfigStore,
        resolver: SchemaResolver,
        projector: Optional[DocumentProjector] = None,
        privacy_filter: Optional[PrivacyFilter] = None,
        decoder: Optional[RecordDecoder] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.decoder = decoder or RecordDecoder()
        self.projector = projector or DocumentProjector(config)
        self.privacy_filter = privacy_filter or PrivacyFilter(
            config, resolver, decoder=self.decoder, metrics=metrics
        )
        self.metrics = metrics
        logger.info("Processing pipeline initialized", has_metrics=metrics is not None)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        metrics: Optional[MetricsCollector] = None,
    ) -> "ProcessingPipeline":
        config = load_config_store(
            settings.policy.config_file,
            settings.policy.country_map_file,
        )
        resolver = SchemaResolver.from_settings(settings.resolver, metrics=metrics)
        return cls(config=config, resolver=resolver, metrics=metrics)

    def project_event(self, event: InboundEvent) -> Optional[ProjectedDocument]:
        """
        Project a single event.

        Returns None when the event has no usable schema or cannot be
        decoded; the failure is logged and counted.
        """
        try:
            resolved = self.resolver.resolve(event.headers)
        except SchemaUnavailableError as e:
            logger.error(
                "Couldn't get a valid schema. Abort processing of event",
                error=str(e),
                details=e.details,
            )
            self._record_dropped(e.error_code)
            return None

        try:
            decoded = self.decoder.decode(resolved, event.body)
        except DecodeError as e:
            logger.error(
                "Exception reading event data",
                error=str(e),
                reason=e.reason,
                details=e.details,
            )
            self._record_dropped(e.reason)
            return None

        document = self.projector.project(decoded, resolved.source_name)
        if self.metrics:
            self.metrics.record_projected(document.source)
        return document

    def process_batch(
        self,
        events: List[InboundEvent],
        request_id: Optional[str] = None,
    ) -> ProcessingResult:
        """Filter a batch and project every surviving event."""
        start = time.perf_counter()
        logger.info("Processing batch", events_count=len(events), request_id=request_id)

        filtered = self.privacy_filter.partition(events)
        survivors = filtered.kept

        documents = []
        for event in survivors:
            document = self.project_event(event)
            if document is not None:
                documents.append(document.to_dict())

        elapsed = time.perf_counter() - start
        result = ProcessingResult(
            documents=documents,
            events_received=len(events),
            events_filtered=filtered.private_addresses,
            events_dropped=filtered.unresolvable + len(survivors) - len(documents),
            processing_time_ms=elapsed * 1000,
        )

        logger.info(
            "Batch processing completed",
            request_id=request_id,
            documents=len(documents),
            events_filtered=result.events_filtered,
            events_dropped=result.events_dropped,
        )

        if self.metrics:
            self.metrics.record_batch(len(events), elapsed)

        return result

    def _record_dropped(self, reason: str) -> None:
        if self.metrics:
            self.metrics.record_dropped(reason)
