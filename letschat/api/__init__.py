"""
API Package — FastAPI Router • Models • JWT Utils • Realtime
============================================================

This package defines the service's HTTP and WebSocket interface.

Contents
--------
- fast_api
    FastAPI router (prefix ``/api``) with endpoints for:
      • Auth: register, login, logout, logout-all, verify, profile, search
      • Conversations: create, list, read, update, participants, read marker,
        key rotation
      • Messages: send (encrypted at rest), list (decrypted), edit, delete
    Every response uses the ``{"success", "data", "error"}`` envelope.

- models
    Pydantic request contracts and the response envelope.

- utils
    JWT helpers:
      • create_access_token(claims) — signed JWT with exp/iat/iss/aud/jti
      • decode_access_token(token) — verified claims or None

- realtime
    WebSocket connection manager (rooms, typing, offline queue) and the
    client event dispatcher used by the ``/ws`` endpoint in `letschat.main`.

Operational Notes
-----------------
- Auth via ``Authorization: Bearer`` or the HttpOnly ``token`` cookie; the
  WebSocket accepts a ``token`` query parameter as well.
- Never log plaintext message content or keys.
"""
