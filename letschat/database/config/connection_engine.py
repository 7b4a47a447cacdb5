"""
Connection Engine (SQLAlchemy)

Purpose
-------
Centralizes database initialization for the application:
- Builds the SQLAlchemy connection URL from environment-backed settings.
- Creates the Engine (connection pool + SQL execution entry point).
- Defines shared MetaData for table and schema objects.
- Exposes a Declarative Base class for ORM models.

Notes
-----
- Uses `URL.create(...)` so credentials stay environment-driven.
- SQLite is the development default; PostgreSQL works by setting
  `DB_DRIVER_NAME=postgresql+psycopg2` and the host/credential fields.
- All ORM models must inherit from `declarativeBase`.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import URL
from sqlalchemy.orm import declarative_base
from sqlalchemy.schema import MetaData
from letschat.database.config.config import settings

# --------------------------------------------------------------------
# Construct the SQLAlchemy connection URL using values from Settings.
# --------------------------------------------------------------------
connection_url = URL.create(
    drivername=settings.DB_DRIVER_NAME,   # e.g., "postgresql+psycopg2", "sqlite"
    username=settings.DB_USERNAME,        # Database username
    password=settings.DB_PASSWORD,        # Database password
    host=settings.DB_HOST,                # Hostname or IP of the DB server
    port=settings.DB_PORT,
    database=settings.DB_DATABASE_NAME    # Database name, or file path for SQLite
)
"""SQLAlchemy connection URL built from Settings."""

# --------------------------------------------------------------------
# Engine object: core interface to the database.
# --------------------------------------------------------------------
# SQLite connections are handed between the server and worker threads.
connect_args = {"check_same_thread": False} if connection_url.get_backend_name() == "sqlite" else {}

connection_engine = create_engine(connection_url, pool_pre_ping=True, connect_args=connect_args)
"""Engine object: manages connections, executes SQL and pools connections."""

# --------------------------------------------------------------------
# Metadata object shared across all models.
# --------------------------------------------------------------------
metadata = MetaData()
"""Schema-level information about tables, constraints and indexes."""

# --------------------------------------------------------------------
# Declarative Base: root class for ORM models.
# --------------------------------------------------------------------
declarativeBase = declarative_base(metadata=metadata)
"""Root class for ORM models; subclasses are registered on `metadata`."""
