"""
The `core` package holds the service layer: functions that orchestrate DAO
calls, enforce permissions and validation, and are called by the API.

Contents
--------
- auth: registration, login/logout, session-backed token verification,
  profiles, user search
- conversations: direct/group creation, listing, membership and read markers
- messages: encrypted send, decrypted read, edit and soft delete
- conversation_encryption: per-conversation key generation, retrieval,
  rotation and the legacy backfill
- errors: `ChatServiceError` hierarchy mapped to HTTP status codes
"""
