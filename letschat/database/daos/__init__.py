"""
The `daos` package contains the Data Access Objects of the application.
Each DAO wraps persistence operations for one entity and expects an active
SQLAlchemy session from the caller (usually injected by `@transactional`).

Contents
--------
- UserDao
    Handles user persistence:
    * Creates users (password hashed by the caller)
    * Fetches users by id, username or id list; searches usernames
    * Updates presence status and profile fields

- UserSessionDao
    Manages login sessions keyed by token hash:
    * Creates, fetches (unexpired only) and deletes sessions
    * Purges expired sessions

- ConversationDao
    Manages conversation records:
    * Creates conversations with their initial participants
    * Fetches by id, by participant, and the direct conversation of two users
    * Updates details, activity timestamp and the wrapped encryption key
    * Archives retired keys

- ParticipantDao
    Manages memberships: list, add, remove, roles and read markers.

- MessageDao
    Manages encrypted message records:
    * Creates messages
    * Fetches pages of messages by conversation (chronological order)
    * Counts unread messages, finds the latest message
    * Replaces ciphertext on edit and soft-deletes
"""
