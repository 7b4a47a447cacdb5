import bcrypt
import hashlib
import re

from letschat.database.config.config import settings

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


class EncryptionDec:
    """
    Utility class for password hashing, credential validation and token hashing.

    Methods
    -------
    hash_password(text: str) -> str
        Hashes a plaintext password using bcrypt (cost from `settings.BCRYPT_ROUNDS`).
    check_passwords(plain_text: str, passwd: str) -> bool
        Verifies a plaintext password against a hashed password.
    is_valid_password(password: str) -> bool
        Validates that a password meets security requirements:
        - Between 8 and 128 characters
        - At least one lowercase letter
        - At least one uppercase letter
        - At least one digit
        - At least one special character
    is_valid_username(username: str) -> bool
        3-20 characters of letters, digits and underscores.
    hash_token(token: str) -> str
        SHA-256 hex digest used to store session tokens.
    """

    def __init__(self, rounds: int | None = None):
        """Initialize the EncryptionDec utility."""
        self.rounds = rounds or settings.BCRYPT_ROUNDS

    def hash_password(self, text: str) -> str:
        """
        Hash a plaintext password using bcrypt.

        Parameters
        ----------
        text : str
            The plaintext password.

        Returns
        -------
        str
            The bcrypt-hashed password (UTF-8 decoded).
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(text.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def check_passwords(self, plain_text: str, passwd: str) -> bool:
        """
        Verify if a plaintext password matches a hashed password.

        Parameters
        ----------
        plain_text : str
            The plaintext password to check.
        passwd : str
            The previously hashed password to verify against.

        Returns
        -------
        bool
            True if the password matches, False otherwise (including malformed hashes).
        """
        try:
            return bcrypt.checkpw(plain_text.encode("utf-8"), passwd.encode("utf-8"))
        except ValueError:
            return False

    def is_valid_password(self, password: str) -> bool:
        """
        Validate that a password meets security complexity rules.

        Notes
        -----
        - Length: 8 to 128 characters
        - Must contain at least:
          - one lowercase letter
          - one uppercase letter
          - one digit
          - one special character (any non-alphanumeric character)
        """
        if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
            return False

        has_lower = re.search(r"[a-z]", password)
        has_upper = re.search(r"[A-Z]", password)
        has_digit = re.search(r"\d", password)
        has_special = re.search(r"[^a-zA-Z0-9]", password)

        return all([has_lower, has_upper, has_digit, has_special])

    def is_valid_username(self, username: str) -> bool:
        return bool(USERNAME_PATTERN.match(username))

    def hash_token(self, token: str) -> str:
        """
        Hash a session token for storage.

        Example
        -------
        >>> EncryptionDec().hash_token("abc")
        'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'
        """
        return hashlib.sha256(token.encode("utf-8")).hexdigest()
