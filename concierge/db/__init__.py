"""Database access (PostgreSQL via asyncpg)."""
