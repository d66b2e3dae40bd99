"""Credential storage backends.

Holds the access/refresh token pair used by the ERP API client:
- InMemoryTokenStore: For tests and short-lived scripts
- FileTokenStore: JSON file (optionally AES-GCM encrypted) shared between processes

Both values live under fixed keys and are always cleared together. The store
also carries the refresh operation currently in flight so that concurrent
requests hitting 401 share a single refresh call.
"""

import asyncio
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from core.config import ApiSettings
from core.observability.logging import get_logger
from core.security.encryption import EncryptedCredentials, TokenEncryption

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"


@dataclass
class Credentials:
    """Access/refresh token pair."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            ACCESS_TOKEN_KEY: self.access_token,
            REFRESH_TOKEN_KEY: self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        return cls(
            access_token=data.get(ACCESS_TOKEN_KEY) or None,
            refresh_token=data.get(REFRESH_TOKEN_KEY) or None,
        )


class TokenStore(ABC):
    """Base class for credential storage.

    Subclasses only implement the durable read/write/erase primitives; the
    in-memory cache, reload policy and refresh sharing live here.
    """

    def __init__(self):
        self._credentials = Credentials()
        self._lock = threading.Lock()
        self._pending_refresh: Optional["asyncio.Future[bool]"] = None

    @abstractmethod
    def _read(self) -> Credentials:
        """Read the persisted credentials."""
        pass

    @abstractmethod
    def _write(self, credentials: Credentials) -> None:
        """Persist the credentials."""
        pass

    @abstractmethod
    def _erase(self) -> None:
        """Remove the persisted credentials."""
        pass

    def reload(self) -> Credentials:
        """Replace the in-memory values with the persisted ones."""
        credentials = self._read()
        with self._lock:
            self._credentials = credentials
        return credentials

    def get_access_token(self) -> Optional[str]:
        if self._credentials.access_token:
            return self._credentials.access_token
        return self.reload().access_token

    def get_refresh_token(self) -> Optional[str]:
        if self._credentials.refresh_token:
            return self._credentials.refresh_token
        return self.reload().refresh_token

    def set_tokens(self, access: str, refresh: str) -> None:
        credentials = Credentials(access_token=access, refresh_token=refresh)
        with self._lock:
            self._credentials = credentials
            self._write(credentials)

    def update_access_token(self, access: str, refresh: Optional[str] = None) -> None:
        """Store a refreshed access token.

        The refresh token is replaced only when the backend rotated it.
        """
        with self._lock:
            credentials = Credentials(
                access_token=access,
                refresh_token=refresh or self._credentials.refresh_token,
            )
            self._credentials = credentials
            self._write(credentials)

    def clear_tokens(self) -> None:
        with self._lock:
            self._credentials = Credentials()
            self._erase()

    def is_authenticated(self) -> bool:
        """Presence of an access token; says nothing about its validity."""
        return bool(self.get_access_token())

    # =========================================================================
    # Refresh sharing
    # =========================================================================

    def is_refresh_pending(self) -> bool:
        return self._pending_refresh is not None and not self._pending_refresh.done()

    def share_refresh(self, start: Callable[[], Awaitable[bool]]) -> "asyncio.Future[bool]":
        """Return the refresh in flight, starting one with ``start`` if none is.

        Must be called from the event loop that runs the requests.
        """
        if self.is_refresh_pending():
            return self._pending_refresh

        pending = asyncio.ensure_future(start())
        self._pending_refresh = pending
        pending.add_done_callback(self._release_refresh)
        return pending

    def _release_refresh(self, finished: "asyncio.Future[bool]") -> None:
        if self._pending_refresh is finished:
            self._pending_refresh = None


class InMemoryTokenStore(TokenStore):
    """In-memory credential storage.

    WARNING: Credentials are lost on restart. Use for tests and one-off scripts.
    """

    def __init__(self, access: Optional[str] = None, refresh: Optional[str] = None):
        super().__init__()
        self._persisted: Dict[str, Optional[str]] = {
            ACCESS_TOKEN_KEY: access,
            REFRESH_TOKEN_KEY: refresh,
        }
        self._credentials = Credentials.from_dict(self._persisted)

    def _read(self) -> Credentials:
        return Credentials.from_dict(self._persisted)

    def _write(self, credentials: Credentials) -> None:
        self._persisted = credentials.to_dict()

    def _erase(self) -> None:
        self._persisted = {ACCESS_TOKEN_KEY: None, REFRESH_TOKEN_KEY: None}


class FileTokenStore(TokenStore):
    """File-based credential storage.

    Stores the token pair as a JSON document readable by every process that
    points at the same path. With ``encryption`` set the document holds an
    ``EncryptedCredentials`` envelope bound to ``origin`` instead of the
    plain values.

    File layout (plain):
        {"access_token": "...", "refresh_token": "..."}
    File layout (encrypted):
        {"encrypted": {"ciphertext": "...", "nonce": "...", "origin": "...", ...}}
    """

    def __init__(
        self,
        path: str = ".tokens/erp_api.json",
        encryption: Optional[TokenEncryption] = None,
        origin: str = "",
    ):
        super().__init__()
        self._path = Path(path)
        self._encryption = encryption
        self._origin = origin
        self._file_lock = threading.Lock()

        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self._path.parent, 0o700)
        except OSError:
            pass  # Windows doesn't support chmod the same way

        self._credentials = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Credentials:
        with self._file_lock:
            if not self._path.exists():
                return Credentials()
            try:
                with open(self._path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Unreadable credential file {self._path}: {e}")
                return Credentials()

        if "encrypted" in data:
            if not self._encryption:
                logger.warning("Credential file is encrypted but no encryption key is configured")
                return Credentials()
            try:
                data = self._encryption.decrypt(EncryptedCredentials.from_dict(data["encrypted"]))
            except (KeyError, ValueError) as e:
                logger.warning(f"Could not decrypt credential file: {e}")
                return Credentials()

        return Credentials.from_dict(data)

    def _write(self, credentials: Credentials) -> None:
        if self._encryption:
            document = {
                "encrypted": self._encryption.encrypt(credentials.to_dict(), origin=self._origin).to_dict()
            }
        else:
            document = credentials.to_dict()

        # Readers in other processes must see either the old or the new document
        with self._file_lock:
            fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(document, f, indent=2)
                try:
                    os.chmod(tmp_path, 0o600)
                except OSError:
                    pass
                os.replace(tmp_path, self._path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

    def _erase(self) -> None:
        with self._file_lock:
            if self._path.exists():
                self._path.unlink()


# =============================================================================
# Process-wide default
# =============================================================================

_default_store: Optional[TokenStore] = None


def build_token_store(settings: ApiSettings) -> TokenStore:
    """Create the store selected by ``settings.token_store``."""
    if settings.token_store == "memory":
        return InMemoryTokenStore()

    encryption = None
    if settings.token_encryption_key:
        encryption = TokenEncryption(settings.token_encryption_key)
    return FileTokenStore(settings.token_path, encryption=encryption, origin=settings.base_url)


def get_default_token_store(settings: Optional[ApiSettings] = None) -> TokenStore:
    """Get the process-wide store, building it on first use."""
    global _default_store
    if _default_store is None:
        _default_store = build_token_store(settings or ApiSettings.from_env())
    return _default_store


def set_default_token_store(store: Optional[TokenStore]) -> None:
    """Swap the process-wide store (``None`` resets it)."""
    global _default_store
    _default_store = store
