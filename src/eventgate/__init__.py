"""
EventGate - Multi-tenant analytics ingestion API

A FastAPI-based event ingestion service that authenticates tenants,
rate-limits and deduplicates writes, and persists events and user profiles
to pluggable flat-file storage.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
