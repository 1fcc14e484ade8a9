"""Configuration and credential management for zescrow."""

from __future__ import annotations

import base64
import json
import os
import tomllib
from collections.abc import Callable
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomli_w
import typer
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, Field, ValidationError, field_validator

from zescrow.chains.near import default_rpc_url

from .errors import ZescrowError

HOME_ENV_VAR = "ZESCROW_HOME"
CONFIG_FILENAME = "config.toml"
CREDENTIALS_FILENAME = "credentials.json"
PBKDF_ITERATIONS = 390_000
ENV_PREFIX = "ZESCROW_"


def default_config_dir() -> Path:
    """Config directory, honouring `ZESCROW_HOME` at call time."""
    return Path(os.environ.get(HOME_ENV_VAR) or Path.home() / ".zescrow")


class ConfigurationError(ZescrowError):
    """Raised when configuration or credential loading fails."""


class ZescrowConfig(BaseModel):
    """Persisted zescrow configuration settings."""

    config_version: int = 1
    zcash_rpc_url: str = "http://127.0.0.1:8232"
    zcash_rpc_user: str | None = None
    zcash_confirmations: int = Field(default=10, ge=0)
    near_network: str = "testnet"
    near_rpc_url: str | None = None
    aggregation_timeout_secs: float = Field(default=5.0, gt=0)
    session_ttl_secs: int = Field(default=3600, gt=0)
    balance_refresh_secs: float = Field(default=60.0, ge=0)
    max_client_contexts: int = Field(default=1024, gt=0)
    connect_path: str = "/connect-wallet"
    default_landing_path: str = "/dashboard"
    protected_prefixes: list[str] = Field(default_factory=lambda: ["/dashboard", "/freelancer", "/client"])
    zcash_address: str | None = None
    near_account_id: str | None = None

    @field_validator("connect_path", "default_landing_path")
    @classmethod
    def _site_relative(cls, value: str) -> str:
        if not value.startswith("/") or value.startswith("//"):
            raise ValueError("paths must be site-relative and start with '/'")
        return value

    @property
    def resolved_near_rpc_url(self) -> str:
        return self.near_rpc_url or default_rpc_url(self.near_network)


@dataclass
class AdapterSecrets:
    """Decrypted credentials handed to the chain adapters."""

    zcash_rpc_password: str | None = None
    zcash_api_key: str | None = None
    near_api_key: str | None = None

    def as_dict(self) -> dict[str, str]:
        return {key: value for key, value in self.__dict__.items() if value}

    def merged(self, updates: AdapterSecrets) -> AdapterSecrets:
        """Copy of these secrets with every value set in `updates` replacing ours."""
        return AdapterSecrets(**{**self.as_dict(), **updates.as_dict()})


@dataclass
class ConfigContext:
    """Represents loaded configuration and decrypted secrets."""

    config: ZescrowConfig
    secrets: AdapterSecrets
    passphrase: str | None


class CredentialStore:
    """Encrypts/decrypts adapter secrets using a passphrase-derived key."""

    def __init__(self, credentials_path: Path) -> None:
        self.credentials_path = credentials_path

    def exists(self) -> bool:
        return self.credentials_path.exists()

    def save(self, passphrase: str, secrets: AdapterSecrets) -> None:
        salt = os.urandom(16)
        key = self._derive_key(passphrase, salt)
        token = Fernet(key).encrypt(json.dumps(secrets.as_dict()).encode("utf-8"))
        payload = {
            "salt": base64.b64encode(salt).decode("ascii"),
            "ciphertext": base64.b64encode(token).decode("ascii"),
            "iterations": PBKDF_ITERATIONS,
        }
        self.credentials_path.write_text(json.dumps(payload, indent=2))

    def load(self, passphrase: str) -> AdapterSecrets:
        try:
            data = json.loads(self.credentials_path.read_text())
            salt = base64.b64decode(data["salt"])
            ciphertext = base64.b64decode(data["ciphertext"])
        except (OSError, KeyError, ValueError) as exc:
            raise ConfigurationError(f"Credentials file {self.credentials_path} is unreadable") from exc
        key = self._derive_key(passphrase, salt)
        try:
            decrypted = Fernet(key).decrypt(ciphertext)
        except InvalidToken as exc:
            raise ConfigurationError("Invalid passphrase for zescrow credentials") from exc
        values = json.loads(decrypted.decode("utf-8"))
        return AdapterSecrets(**{name: values.get(name) for name in AdapterSecrets.__dataclass_fields__})

    @staticmethod
    def _derive_key(passphrase: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=PBKDF_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class ConfigManager:
    """Handles loading, merging, and persisting zescrow configuration."""

    def __init__(
        self,
        config_dir: Path | None = None,
        prompt_fn: Callable[..., str] | None = None,
        echo_fn: Callable[[str], None] | None = None,
        project_config_path: Path | None = None,
        override_config_path: Path | None = None,
    ) -> None:
        self.config_dir = config_dir or default_config_dir()
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_path = self.config_dir / CONFIG_FILENAME
        self.credentials_path = self.config_dir / CREDENTIALS_FILENAME
        self._credential_store = CredentialStore(self.credentials_path)
        self._prompt = prompt_fn or self._default_prompt
        self._echo = echo_fn or typer.echo
        self.project_config_path = project_config_path
        self.override_config_path = override_config_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def ensure(self, *, interactive: bool = True, passphrase: str | None = None) -> ConfigContext:
        """Load configuration (writing defaults on first use) and decrypt secrets."""
        if not self.config_path.exists():
            self._save_config(ZescrowConfig())
            self._echo("Wrote default zescrow configuration to " + str(self.config_path))
        config = self.load_config()

        if not self._credential_store.exists():
            return ConfigContext(config=config, secrets=self._env_secrets(), passphrase=passphrase)

        secrets, used_passphrase = self._load_secrets(passphrase=passphrase, interactive=interactive)
        return ConfigContext(config=config, secrets=secrets, passphrase=used_passphrase)

    def load_config(self) -> ZescrowConfig:
        data: dict[str, Any] = self._read_config_dict(self.config_path)
        if self.project_config_path:
            data = self._merge_dicts(data, self._read_config_dict(self.project_config_path))
        if self.override_config_path:
            data = self._merge_dicts(data, self._read_config_dict(self.override_config_path))
        data = self._merge_dicts(data, self._env_overrides())
        try:
            return ZescrowConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    def update(self, **updates: object) -> ZescrowConfig:
        current = self._read_config_dict(self.config_path)
        current.update({key: value for key, value in updates.items() if value is not None})
        try:
            config = ZescrowConfig(**current)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc
        self._save_config(config)
        return config

    def save_credentials(self, passphrase: str, secrets: AdapterSecrets) -> AdapterSecrets:
        """Merge `secrets` into the stored credentials and re-encrypt them.

        Secrets already stored and not given in `secrets` are kept. Raises
        `ConfigurationError` when an existing file does not decrypt with
        `passphrase`.
        """
        if self._credential_store.exists():
            secrets = self._credential_store.load(passphrase).merged(secrets)
        self._credential_store.save(passphrase, secrets)
        self._echo("Credentials saved to " + str(self.credentials_path))
        return secrets

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _save_config(self, config: ZescrowConfig) -> None:
        self.config_path.write_text(tomli_w.dumps(config.model_dump(exclude_none=True)))

    def _read_config_dict(self, path: Path | None) -> dict[str, Any]:
        if path is None:
            return {}
        if not path.exists():
            return {}
        try:
            return tomllib.loads(path.read_text())
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigurationError(f"Failed to load config from {path}: {exc}") from exc

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        result = deepcopy(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    @staticmethod
    def _env_overrides() -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for name in ("zcash_rpc_url", "zcash_rpc_user", "near_network", "near_rpc_url", "zcash_address", "near_account_id"):
            raw = os.environ.get(ENV_PREFIX + name.upper())
            if raw:
                overrides[name] = raw
        return overrides

    @staticmethod
    def _env_secrets() -> AdapterSecrets:
        return AdapterSecrets(
            zcash_rpc_password=os.environ.get("ZESCROW_ZCASH_RPC_PASSWORD") or None,
            zcash_api_key=os.environ.get("ZESCROW_ZCASH_API_KEY") or None,
            near_api_key=os.environ.get("ZESCROW_NEAR_API_KEY") or None,
        )

    def _load_secrets(self, *, passphrase: str | None, interactive: bool) -> tuple[AdapterSecrets, str]:
        attempts = 3
        while True:
            pwd = passphrase or os.environ.get("ZESCROW_PASSPHRASE")
            if not pwd:
                if not interactive:
                    raise ConfigurationError("Passphrase required to decrypt zescrow credentials")
                pwd = self._prompt("Enter zescrow passphrase", hide_input=True)
            try:
                return self._credential_store.load(pwd), pwd
            except ConfigurationError:
                if not interactive:
                    raise
                attempts -= 1
                if attempts <= 0:
                    raise
                self._echo("Invalid passphrase. Please try again.")
                passphrase = None

    @staticmethod
    def _default_prompt(
        message: str,
        *,
        hide_input: bool = False,
        confirmation_prompt: bool = False,
        default: str | None = None,
    ) -> str:
        if default is not None:
            return typer.prompt(message, default=default, hide_input=hide_input, confirmation_prompt=confirmation_prompt)
        return typer.prompt(message, hide_input=hide_input, confirmation_prompt=confirmation_prompt)


__all__ = [
    "AdapterSecrets",
    "ConfigContext",
    "ConfigManager",
    "ConfigurationError",
    "CredentialStore",
    "HOME_ENV_VAR",
    "ZescrowConfig",
    "default_config_dir",
]
