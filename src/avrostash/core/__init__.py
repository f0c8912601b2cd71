"""
Core business logic components.

This package contains the projection pipeline components:
- Policy tables (ConfigStore)
- Schema resolution and caching
- Avro record decoding
- Document projection
- Private address filtering
- Metrics collection
"""
