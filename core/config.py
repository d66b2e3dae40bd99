"""ERP API client configuration.

Reads settings from the environment, loading a ``.env`` file first when one
exists next to the project root or in the working directory.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


_PROJECT_ROOT = Path(__file__).resolve().parents[1]

VALID_TOKEN_STORES = ("memory", "file")


class ConfigurationError(ValueError):
    """Invalid or missing client settings."""
    pass


def _load_env_files() -> None:
    for env_path in (_PROJECT_ROOT / ".env", Path.cwd() / ".env"):
        if env_path.exists():
            load_dotenv(env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ApiSettings:
    """Settings for the ERP API access layer.

    Attributes:
        base_url: Origin prepended to every relative request path
        refresh_path: Token refresh endpoint (unauthenticated)
        login_path: Token obtain endpoint (unauthenticated)
        token_store: "memory" or "file"
        token_path: Location of the persisted credentials for the file store
        token_encryption_key: Optional base64 AES-256 key for the file store
        log_level: Name of the logging level
        log_json: Emit structured JSON logs instead of human-readable lines
    """
    base_url: str = "http://127.0.0.1:8000"
    refresh_path: str = "/api/v1/auth/token/refresh/"
    login_path: str = "/api/v1/auth/token/"
    token_store: str = "file"
    token_path: str = ".tokens/erp_api.json"
    token_encryption_key: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def refresh_url(self) -> str:
        return f"{self.base_url}{self.refresh_path}"

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def from_env(cls) -> "ApiSettings":
        """Build settings from ERP_* environment variables.

        Raises:
            ConfigurationError: If a value is invalid
        """
        _load_env_files()

        settings = cls(
            base_url=os.getenv("ERP_API_BASE_URL", cls.base_url).strip().rstrip("/"),
            refresh_path=os.getenv("ERP_API_REFRESH_PATH", cls.refresh_path).strip(),
            login_path=os.getenv("ERP_API_LOGIN_PATH", cls.login_path).strip(),
            token_store=os.getenv("ERP_TOKEN_STORE", cls.token_store).strip().lower(),
            token_path=os.getenv("ERP_TOKEN_PATH", cls.token_path).strip(),
            token_encryption_key=os.getenv("ERP_TOKEN_ENCRYPTION_KEY") or None,
            log_level=os.getenv("ERP_LOG_LEVEL", cls.log_level).strip().upper(),
            log_json=_env_bool("ERP_LOG_JSON"),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"ERP_API_BASE_URL must be an http(s) origin, got {self.base_url!r}"
            )

        invalid_paths = [
            name
            for name, value in (
                ("ERP_API_REFRESH_PATH", self.refresh_path),
                ("ERP_API_LOGIN_PATH", self.login_path),
            )
            if not value.startswith("/")
        ]
        if invalid_paths:
            raise ConfigurationError(
                "Endpoint paths must start with '/': " + ", ".join(invalid_paths)
            )

        if self.token_store not in VALID_TOKEN_STORES:
            raise ConfigurationError(
                "ERP_TOKEN_STORE must be one of: " + ", ".join(VALID_TOKEN_STORES)
            )

        if not isinstance(self.logging_level, int):
            raise ConfigurationError(f"Unknown ERP_LOG_LEVEL: {self.log_level}")
