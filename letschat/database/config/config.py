"""
Configuration — Pydantic v2 Settings (env / .env)
=================================================

Purpose
-------
Centralized, strongly-typed application configuration using:
- Pydantic v2 `BaseSettings` for environment-driven values
- `pydantic-settings` v2 for `.env` loading and model config

Load Order & Behavior
---------------------
- Values are read from the environment; if not present, `.env` is used.
- Every field has a development default so the service boots against a local
  SQLite file with no configuration at all. Production deployments must at
  least override `SECRET_KEY` and `KEY_ENCRYPTION_SECRET`.
- `extra="ignore"`: unknown env vars are ignored (not an error).

Usage
-----
from letschat.database.config.config import settings

# Example
db_host = settings.DB_HOST
max_len = settings.MESSAGE_MAX_LENGTH

Security
--------
- Never commit secrets or the `.env` file to source control.
- `KEY_ENCRYPTION_SECRET` wraps every conversation key at rest. Losing it makes
  all stored messages unreadable; changing it requires re-wrapping the keys.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration settings loaded from environment variables
    or a `.env` file. Provides strongly typed access to environment values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    FRONTEND_URL: str = Field("http://localhost:3000", description="Comma-separated list of origins allowed by CORS.")
    DB_DRIVER_NAME: str = Field("sqlite", description="Database driver (e.g., `postgresql+psycopg2`, `sqlite`).")
    DB_USERNAME: Optional[str] = Field(None, description="Database username credential.")
    DB_PASSWORD: Optional[str] = Field(None, description="Database password credential.")
    DB_HOST: Optional[str] = Field(None, description="Hostname or IP address of the database server.")
    DB_PORT: Optional[int] = Field(None, description="Port of the database server.")
    DB_DATABASE_NAME: str = Field("letschat.db", description="Name of the database (file path for SQLite).")
    SECRET_KEY: str = Field("letschat-dev-secret-change-me", description="Secret key for signing JWTs.")
    ALGORITHM: str = Field("HS256", description="JWT signing algorithm.")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(1440, description="Duration (in minutes) before access tokens expire.")
    JWT_ISSUER: str = Field("letschat", description="`iss` claim written to and required from every token.")
    JWT_AUDIENCE: str = Field("letschat-users", description="`aud` claim written to and required from every token.")
    SESSION_EXPIRE_DAYS: int = Field(30, description="Lifetime of a login session row.")
    BCRYPT_ROUNDS: int = Field(12, description="bcrypt cost factor used for password hashing.")
    KEY_ENCRYPTION_SECRET: str = Field(
        "letschat-dev-key-encryption-secret", description="Master secret wrapping conversation keys at rest."
    )
    LOG_LEVEL: str = Field("INFO", description="Root log level (DEBUG, INFO, WARNING, ...).")
    MESSAGE_MAX_LENGTH: int = Field(4000, description="Maximum number of characters in a message.")
    OFFLINE_QUEUE_LIMIT: int = Field(100, description="Realtime events kept per offline user.")

    @property
    def cors_origins(self) -> List[str]:
        """FRONTEND_URL split into individual origins."""
        return [origin.strip() for origin in self.FRONTEND_URL.split(",") if origin.strip()]


# Singleton instance of Settings, ready to be imported across the app
settings = Settings()
"""Defines a Settings object that contains the contents of the environment / .env file"""
