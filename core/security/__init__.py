"""Security module - credential storage and encryption."""

from core.security.encryption import (
    TokenEncryption,
    EncryptedCredentials,
    generate_encryption_key,
)
from core.security.token_store import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    Credentials,
    TokenStore,
    InMemoryTokenStore,
    FileTokenStore,
    build_token_store,
    get_default_token_store,
    set_default_token_store,
)

__all__ = [
    "TokenEncryption",
    "EncryptedCredentials",
    "generate_encryption_key",
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
    "Credentials",
    "TokenStore",
    "InMemoryTokenStore",
    "FileTokenStore",
    "build_token_store",
    "get_default_token_store",
    "set_default_token_store",
]
