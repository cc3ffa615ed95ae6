"""Database-agnostic type definitions for SQLAlchemy models.

Every model uses these so the schema works on PostgreSQL in production and
on SQLite in tests.
"""
from sqlalchemy import JSON, Numeric
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases
UUIDType = PG_UUID

# Money columns: whole rupees with paise precision
MoneyType = Numeric(12, 2)

# Percentages such as 37.50
PercentType = Numeric(5, 2)
