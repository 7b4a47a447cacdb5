"""
Database Transaction Management
===============================

This module provides utilities for managing SQLAlchemy database sessions
using Python context variables and a decorator-based transaction wrapper.

It allows propagation of a database session across function calls without
explicitly threading it through arguments. Functions decorated with
``@transactional`` run inside a managed transactional context; nested
decorated calls join the outermost transaction.

Key features
~~~~~~~~~~~~
- Context variable to store the active session
- Implicit reuse of existing sessions
- Automatic commit and rollback handling
- Clean session closure after execution
"""

from functools import wraps
from sqlalchemy.orm import sessionmaker
import contextvars
import logging
from letschat.database.config.connection_engine import connection_engine

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------
# Context variable to store the current database session.
# --------------------------------------------------------------------
db_session_context = contextvars.ContextVar("db_session_context", default=None)
"""Context variable storing the active SQLAlchemy session."""

SessionFactory = sessionmaker(bind=connection_engine, expire_on_commit=False)
"""Session factory bound to the application engine."""


def transactional(func):
    """
    Decorator to wrap functions in a managed SQLAlchemy transaction.

    Ensures that:
    - If a session already exists in context, it is reused.
    - Otherwise, a new session is created, committed, and closed.
    - On errors, the session is rolled back and closed.

    Parameters
    ----------
    func : callable
        The function to wrap. It must accept a `session` keyword argument,
        and callers must pass every other argument by keyword.

    Returns
    -------
    callable
        The wrapped function, executed within a database transaction.

    Example
    -------
    >>> @transactional
    ... def rename_user(session, user_id, display_name):
    ...     session.get(User, user_id).display_name = display_name
    ...
    >>> rename_user(user_id=uid, display_name="Roman")
    """
    @wraps(func)
    def wrap_func(*args, **kwargs):
        # Try to get an existing session from context
        session = db_session_context.get()
        if session:
            return func(*args, session=session, **kwargs)

        session = SessionFactory()
        token = db_session_context.set(session)

        try:
            result = func(*args, session=session, **kwargs)
            session.flush()   # Push pending changes
            session.commit()  # Commit transaction
        except Exception:
            logger.debug("Rolling back transaction of %s", func.__qualname__)
            session.rollback()
            raise
        finally:
            session.close()
            db_session_context.reset(token)

        return result

    return wrap_func
