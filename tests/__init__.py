"""
Vault Test Suite.

This package contains:
- unit/: Unit tests (SQLite shards in temporary directories, in-memory queue)
- integration/: HTTP scenarios through the FastAPI app and TestClient
"""
