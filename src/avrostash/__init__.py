"""
avrostash - Avro event projection into Logstash formatted documents

Decodes schema-tagged Avro events from a streaming pipeline, applies
per-decoder field policies and field transforms, and filters events with
private network addresses before they reach the search index.
"""

__version__ = "0.1.0"
