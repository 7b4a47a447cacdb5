"""
Settings and engine bootstrap.

Contents:
    - config: `Settings` read from the environment or `.env`, exposed as the `settings` singleton
    - connection_engine: connection URL, Engine, shared MetaData and `declarativeBase` for the ORM models
"""
