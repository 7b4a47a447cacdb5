"""
The `crypt` package provides the cryptographic utilities that secure
authentication workflows and message storage.

Contents
--------
- encrypt_decrypt
    Utility module exposing the `EncryptionDec` class:
        * `hash_password` — hashes plaintext passwords using bcrypt
        * `check_passwords` — verifies a plaintext password against a hashed one
        * `is_valid_password` — validates password complexity rules:
            - length 8 to 128
            - must include lowercase, uppercase, digit, and special character
        * `is_valid_username` — 3-20 letters, digits or underscores
        * `hash_token` — SHA-256 digest under which session tokens are stored

- conversation_encryption
    AES-256-GCM message sealing with per-conversation keys (`cryptography`):
        * `ConversationEncryption.generate_key` / `wrap_key` / `unwrap_key`
        * `ConversationEncryption.encrypt_message` / `decrypt_message`
        * `DecryptionError` for any authentication failure
"""
