"""
The `database` package is responsible for all interactions with the application's database.
It provides configuration, entity definitions, data access objects, the service layer
and transaction helpers.

Contents:
    - config:
        Settings and the SQLAlchemy engine / declarative base.

    - entities:
        SQLAlchemy entity models for users, sessions, conversations,
        participants, encrypted messages and archived conversation keys.

    - daos:
        Data Access Objects (DAOs) providing persistence operations for the entities.

    - core:
        Service functions that connect the API with the database: authentication,
        conversations, encrypted messaging and conversation key management.

    - helpers:
        Transaction and session management (`@transactional`).
"""
