"""
Cross-cutting helpers for the database layer.

Contents
--------
- transactionManagement
    `@transactional` and the `db_session_context` variable through which the
    active SQLAlchemy session reaches nested service and DAO calls.
- clock
    UTC helpers (`utc_now`, `as_utc`, `isoformat`) that normalize the naive
    datetimes SQLite returns.
"""
