"""
Core business logic components.

This package contains the admission and query machinery:
- Credential resolution (API keys, JWTs)
- Fixed-window rate limiting and event deduplication stores
- Admission pipeline for writes, query engine for reads
- Metrics, health aggregation and background maintenance
"""
