"""Column types shared by the models.

The same metadata is created on PostgreSQL in production and on SQLite in
the test suite, so only portable types are used here.
"""
from sqlalchemy import JSON, Uuid

# Stored responses for Idempotency-Key replay
JSONType = JSON

# Native uuid on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid
