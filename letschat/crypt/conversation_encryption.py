"""
Conversation-scoped message encryption.

Every conversation owns one random 256-bit key. Messages are sealed with
AES-256-GCM under that key:

- a fresh 96-bit nonce per message (stored as ``iv``),
- the 128-bit authentication tag stored apart from the ciphertext (``tag``),
- associated data ``b"letschat:" + conversation_id`` so a ciphertext moved to
  another conversation fails authentication.

``iv``, ``tag`` and ``encrypted_content`` are hex strings.

Conversation keys are never stored raw. ``wrap_key`` seals them with a master
key derived (PBKDF2-HMAC-SHA256) from ``settings.KEY_ENCRYPTION_SECRET`` and
encodes them as ``v1:<nonce_b64>:<cipher_b64>``; ``unwrap_key`` reverses it.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Union
from uuid import UUID
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from letschat.database.config.config import settings

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_WRAP_VERSION = "v1"
_KEY_WRAP_AAD = b"letschat:conversation-key:v1"
_KEY_WRAP_SALT = b"letschat:key-encryption-secret"
_KDF_ITERATIONS = 390_000


class DecryptionError(Exception):
    """Raised when a ciphertext or wrapped key fails authentication or is malformed."""


@dataclass(frozen=True)
class EncryptedPayload:
    """Hex-encoded AES-GCM output as persisted on a message row."""

    encrypted_content: str
    iv: str
    tag: str


@lru_cache(maxsize=4)
def _master_key(secret: str) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=_KEY_WRAP_SALT, iterations=_KDF_ITERATIONS)
    return kdf.derive(secret.encode("utf-8"))


def _associated_data(conversation_id: Union[UUID, str]) -> bytes:
    return b"letschat:" + str(conversation_id).encode("utf-8")


class ConversationEncryption:
    """
    AES-256-GCM sealing of message bodies with per-conversation keys.

    Parameters
    ----------
    secret : str | None
        Master secret used to wrap conversation keys. Defaults to
        ``settings.KEY_ENCRYPTION_SECRET``.

    Example
    -------
    >>> enc = ConversationEncryption()
    >>> key = enc.generate_key()
    >>> payload = enc.encrypt_message("hi", key, conversation_id)
    >>> enc.decrypt_message(payload.encrypted_content, payload.iv, payload.tag, key, conversation_id)
    'hi'
    """

    def __init__(self, secret: str | None = None):
        self._secret = secret or settings.KEY_ENCRYPTION_SECRET

    def generate_key(self) -> bytes:
        """Return 32 random bytes suitable as an AES-256 key."""
        return os.urandom(KEY_SIZE)

    def wrap_key(self, key: bytes) -> str:
        """
        Seal a conversation key with the master key.

        Parameters
        ----------
        key : bytes
            Raw 32-byte conversation key.

        Returns
        -------
        str
            ``v1:<nonce_b64>:<cipher_b64>`` where the cipher part is
            ciphertext||tag as produced by AESGCM.
        """
        if len(key) != KEY_SIZE:
            raise ValueError(f"conversation keys are {KEY_SIZE} bytes, got {len(key)}")
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(_master_key(self._secret)).encrypt(nonce, key, _KEY_WRAP_AAD)
        return ":".join([
            KEY_WRAP_VERSION,
            base64.b64encode(nonce).decode("ascii"),
            base64.b64encode(sealed).decode("ascii"),
        ])

    def unwrap_key(self, wrapped: str) -> bytes:
        """
        Recover a raw conversation key.

        Raises
        ------
        DecryptionError
            If the blob is malformed, uses an unknown version, or was sealed
            under a different master secret.
        """
        parts = (wrapped or "").split(":")
        if len(parts) != 3 or parts[0] != KEY_WRAP_VERSION:
            raise DecryptionError("invalid wrapped key format")
        try:
            nonce = base64.b64decode(parts[1], validate=True)
            sealed = base64.b64decode(parts[2], validate=True)
            key = AESGCM(_master_key(self._secret)).decrypt(nonce, sealed, _KEY_WRAP_AAD)
        except (InvalidTag, ValueError, binascii.Error) as e:
            raise DecryptionError("conversation key could not be unwrapped") from e
        if len(key) != KEY_SIZE:
            raise DecryptionError("unwrapped key has the wrong size")
        return key

    def encrypt_message(self, content: str, key: bytes, conversation_id: Union[UUID, str]) -> EncryptedPayload:
        """
        Encrypt a message body for one conversation.

        Parameters
        ----------
        content : str
            Plaintext message.
        key : bytes
            Raw conversation key.
        conversation_id : UUID | str
            Bound into the associated data.

        Returns
        -------
        EncryptedPayload
            Hex ciphertext, nonce and tag.
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, content.encode("utf-8"), _associated_data(conversation_id))
        return EncryptedPayload(
            encrypted_content=sealed[:-TAG_SIZE].hex(),
            iv=nonce.hex(),
            tag=sealed[-TAG_SIZE:].hex(),
        )

    def decrypt_message(
        self,
        encrypted_content: str,
        iv: str,
        tag: str,
        key: bytes,
        conversation_id: Union[UUID, str],
    ) -> str:
        """
        Decrypt and authenticate a message body.

        Raises
        ------
        DecryptionError
            On a wrong key, a tampered ciphertext/tag/nonce, a different
            conversation id, or malformed hex.
        """
        try:
            nonce = bytes.fromhex(iv)
            sealed = bytes.fromhex(encrypted_content) + bytes.fromhex(tag)
            if len(nonce) != NONCE_SIZE or len(bytes.fromhex(tag)) != TAG_SIZE:
                raise ValueError("bad nonce or tag length")
            plaintext = AESGCM(key).decrypt(nonce, sealed, _associated_data(conversation_id))
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError) as e:
            raise DecryptionError("message failed authentication") from e
