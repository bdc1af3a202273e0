"""Project-wide constants shared by runtime code and Alembic migrations."""

DB_SCHEMA = "agentcoord"
