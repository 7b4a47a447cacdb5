"""
LetsChat backend.

A chat service whose messages are encrypted at rest with per-conversation
AES-256-GCM keys and decrypted transparently for participants.

Packages
--------
- api: FastAPI router, request models, JWT utilities, realtime connection manager
- crypt: password hashing/validation and the conversation message cipher
- database: settings, engine, entities, DAOs, service layer and transaction helpers
- main: the FastAPI application (``uvicorn letschat.main:app``)
"""
