"""Configuration loading utilities for fieldguard."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .paths import default_store_dir, runtime_config_dir

MIN_PBKDF2_ITERATIONS = 100_000
MIN_RSA_KEY_BITS = 2048


class KdfConfig(BaseModel):
    """Parameters for deriving wrapping keys from a password."""

    algorithm: Literal["PBKDF2-HMAC-SHA256"] = "PBKDF2-HMAC-SHA256"
    iterations: int = Field(default=MIN_PBKDF2_ITERATIONS)
    length: int = Field(default=32, description="Derived key size in bytes")
    salt_length: int = Field(default=16, ge=16)
    nonce_length: int = Field(default=12)

    @field_validator("iterations")
    @classmethod
    def _validate_iterations(cls, value: int) -> int:
        if value < MIN_PBKDF2_ITERATIONS:
            raise ValueError(f"PBKDF2 needs at least {MIN_PBKDF2_ITERATIONS} iterations")
        return value

    @field_validator("length")
    @classmethod
    def _validate_length(cls, value: int) -> int:
        if value != 32:
            raise ValueError("AES-256-GCM requires a 32-byte derived key")
        return value


class CryptoDefaults(BaseModel):
    rsa_key_size: int = Field(default=MIN_RSA_KEY_BITS)
    oaep_hash: Literal["SHA256"] = "SHA256"
    field_scheme: Literal["auto", "rsa-oaep", "hybrid"] = Field(
        default="auto",
        description="auto: RSA-OAEP when the value fits, hybrid otherwise",
    )

    @field_validator("rsa_key_size")
    @classmethod
    def _validate_key_size(cls, value: int) -> int:
        if value < MIN_RSA_KEY_BITS:
            raise ValueError(f"RSA keys must be at least {MIN_RSA_KEY_BITS} bits")
        return value


class StorageConfig(BaseModel):
    backend: Literal["file", "memory"] = "file"
    store_dir: Path = Field(default_factory=default_store_dir)
    namespace: str = Field(default="fieldguard", min_length=1)

    @field_validator("namespace")
    @classmethod
    def _validate_namespace(cls, value: str) -> str:
        if "/" in value or "\\" in value or value.startswith("."):
            raise ValueError("namespace must be a plain name")
        return value


class ServerConfig(BaseModel):
    base_url: str = Field(default="http://127.0.0.1:4000", description="Key storage API root")
    timeout: float = Field(default=10.0, gt=0)
    status_path: str = "/api/keys/status"
    retrieve_path: str = "/api/keys/retrieve"
    store_path: str = "/api/keys/store"
    delete_path: str = "/api/keys"


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Logging verbosity level")

    def normalized_level(self) -> str:
        return self.level.upper()


class AppConfig(BaseModel):
    kdf: KdfConfig = Field(default_factory=KdfConfig)
    crypto: CryptoDefaults = Field(default_factory=CryptoDefaults)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    field_sets: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Extra or overriding sensitive field sets keyed by name",
    )


DEFAULT_CONFIG = AppConfig()


def config_search_paths(explicit: Optional[Path] = None) -> Iterable[Path]:
    if explicit:
        yield explicit
    yield Path.cwd() / ".fieldguard" / "config.yaml"
    yield runtime_config_dir() / "config.yaml"


def load_config(path: Optional[Path] = None) -> AppConfig:
    for candidate in config_search_paths(path):
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            try:
                return AppConfig.model_validate(data)
            except ValidationError as exc:
                raise ValueError(f"Invalid configuration in {candidate}: {exc}") from exc
    return AppConfig()


def dump_default_config(target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG.model_dump(mode="json"), handle, sort_keys=False)


__all__ = [
    "AppConfig",
    "CryptoDefaults",
    "DEFAULT_CONFIG",
    "KdfConfig",
    "LoggingConfig",
    "ServerConfig",
    "StorageConfig",
    "dump_default_config",
    "load_config",
]
