"""
Inbound event as delivered by the ingestion pipeline.
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class InboundEvent:
    """Opaque Avro body plus the pipeline's headers."""
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
