"""
Schema-directed decoding of Avro event bodies.
"""

import io
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import fastavro

from .exceptions import IncompleteRecordError, MalformedRecordError
from .schema import FieldSpec, ResolvedSchema


@dataclass
class DecodedRecord:
    """Field values of one event, with the schema's field declarations."""
    values: Dict[str, Any]
    fields: Tuple[FieldSpec, ...] = field(default_factory=tuple)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def __contains__(self, name: object) -> bool:
        return name in self.values


class RecordDecoder:
    """
    Decodes a raw body with a resolved schema.

    Exactly as many bytes as the schema implies are consumed; trailing bytes
    are ignored.
    """

    def decode(self, resolved: ResolvedSchema, raw: bytes) -> DecodedRecord:
        try:
            datum = fastavro.schemaless_reader(io.BytesIO(raw), resolved.schema)
        except EOFError as e:
            raise IncompleteRecordError(
                "Event body ended before the record was complete",
                details={"body_bytes": len(raw), "fingerprint": resolved.fingerprint},
            ) from e
        except (ValueError, TypeError, KeyError, IndexError, OverflowError, UnicodeDecodeError) as e:
            raise MalformedRecordError(
                "Cannot decode event body",
                details={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "fingerprint": resolved.fingerprint,
                },
            ) from e

        if not isinstance(datum, dict):
            raise MalformedRecordError(
                "Event schema is not a record",
                details={"fingerprint": resolved.fingerprint},
            )

        return DecodedRecord(values=datum, fields=resolved.fields)
