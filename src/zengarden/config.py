"""Runtime configuration for the flower task worker and its remote services."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class WorkerSettings:
    """Dispatcher loop and retry policy settings."""

    poll_interval_seconds: float = 5.0
    default_max_retries: int = 3
    stale_task_seconds: int = 1_800
    fail_fast_on_configuration_error: bool = True


@dataclass(slots=True)
class GeneratorSettings:
    """Text/image generation relay settings."""

    relay_url: str = "http://localhost:3001"
    api_key: str = ""
    text_model: str = "gemini-3-flash-preview"
    image_model: str = "gemini-3-pro-image-preview"
    aspect_ratio: str = "1:1"
    image_size: str = "1K"
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class StorageSettings:
    """S3-compatible object storage (Cloudflare R2) settings."""

    account_id: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket_name: str = "zengarden"
    public_url: str = ""
    endpoint_url: str = ""
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class MinterSettings:
    """EVM NFT minting settings."""

    rpc_url: str = "https://bsc-dataseed.bnbchain.org"
    private_key: str = ""
    contract_address: str = ""
    request_timeout_seconds: float = 30.0
    receipt_timeout_seconds: float = 120.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".zengarden.db")
    sqlite_busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    generator: GeneratorSettings = field(default_factory=GeneratorSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    minter: MinterSettings = field(default_factory=MinterSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("ZENGARDEN_DB_PATH", ".zengarden.db")),
            sqlite_busy_timeout_ms=int(os.getenv("ZENGARDEN_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                poll_interval_seconds=float(
                    os.getenv("ZENGARDEN_POLL_INTERVAL_SECONDS", "5.0"),
                ),
                default_max_retries=int(os.getenv("ZENGARDEN_DEFAULT_MAX_RETRIES", "3")),
                stale_task_seconds=int(os.getenv("ZENGARDEN_STALE_TASK_SECONDS", "1800")),
                fail_fast_on_configuration_error=_env_bool(
                    "ZENGARDEN_FAIL_FAST_ON_CONFIGURATION_ERROR",
                    default=True,
                ),
            ),
            generator=GeneratorSettings(
                relay_url=os.getenv(
                    "ZENGARDEN_GENERATOR_RELAY_URL",
                    os.getenv("GEMINI_RELAY_URL", "http://localhost:3001"),
                ),
                api_key=os.getenv(
                    "ZENGARDEN_GENERATOR_API_KEY",
                    os.getenv("GEMINI_API_KEY", ""),
                ),
                text_model=os.getenv("ZENGARDEN_GENERATOR_TEXT_MODEL", "gemini-3-flash-preview"),
                image_model=os.getenv(
                    "ZENGARDEN_GENERATOR_IMAGE_MODEL",
                    "gemini-3-pro-image-preview",
                ),
                aspect_ratio=os.getenv("ZENGARDEN_GENERATOR_ASPECT_RATIO", "1:1"),
                image_size=os.getenv("ZENGARDEN_GENERATOR_IMAGE_SIZE", "1K"),
                timeout_seconds=float(os.getenv("ZENGARDEN_GENERATOR_TIMEOUT_SECONDS", "120")),
            ),
            storage=StorageSettings(
                account_id=os.getenv("ZENGARDEN_R2_ACCOUNT_ID", os.getenv("R2_ACCOUNT_ID", "")),
                access_key_id=os.getenv(
                    "ZENGARDEN_R2_ACCESS_KEY_ID",
                    os.getenv("R2_ACCESS_KEY_ID", ""),
                ),
                secret_access_key=os.getenv(
                    "ZENGARDEN_R2_SECRET_ACCESS_KEY",
                    os.getenv("R2_SECRET_ACCESS_KEY", ""),
                ),
                bucket_name=os.getenv(
                    "ZENGARDEN_R2_BUCKET_NAME",
                    os.getenv("R2_BUCKET_NAME", "zengarden"),
                ),
                public_url=os.getenv("ZENGARDEN_R2_PUBLIC_URL", os.getenv("R2_PUBLIC_URL", "")),
                endpoint_url=os.getenv("ZENGARDEN_R2_ENDPOINT_URL", ""),
                timeout_seconds=float(os.getenv("ZENGARDEN_R2_TIMEOUT_SECONDS", "60")),
            ),
            minter=MinterSettings(
                rpc_url=os.getenv(
                    "ZENGARDEN_MINTER_RPC_URL",
                    "https://bsc-dataseed.bnbchain.org",
                ),
                private_key=os.getenv(
                    "ZENGARDEN_MINTER_PRIVATE_KEY",
                    os.getenv("MINTER_PRIVATE_KEY", ""),
                ),
                contract_address=os.getenv(
                    "ZENGARDEN_NFT_CONTRACT_ADDRESS",
                    os.getenv("NFT_CONTRACT_ADDRESS", ""),
                ),
                request_timeout_seconds=float(
                    os.getenv("ZENGARDEN_MINTER_REQUEST_TIMEOUT_SECONDS", "30"),
                ),
                receipt_timeout_seconds=float(
                    os.getenv("ZENGARDEN_MINTER_RECEIPT_TIMEOUT_SECONDS", "120"),
                ),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if worker numeric settings are out of range.

        Remote credentials are deliberately left to the clients, which fail
        at call time so the task records the error.
        """

        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("ZENGARDEN_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.default_max_retries < 1:
            raise ValueError("ZENGARDEN_DEFAULT_MAX_RETRIES must be >= 1.")
        if self.worker.stale_task_seconds < 0:
            raise ValueError("ZENGARDEN_STALE_TASK_SECONDS must be >= 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("ZENGARDEN_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        for name, value in (
            ("ZENGARDEN_GENERATOR_TIMEOUT_SECONDS", self.generator.timeout_seconds),
            ("ZENGARDEN_R2_TIMEOUT_SECONDS", self.storage.timeout_seconds),
            ("ZENGARDEN_MINTER_REQUEST_TIMEOUT_SECONDS", self.minter.request_timeout_seconds),
            ("ZENGARDEN_MINTER_RECEIPT_TIMEOUT_SECONDS", self.minter.receipt_timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        _validate_http_url("ZENGARDEN_GENERATOR_RELAY_URL", self.generator.relay_url)
        if self.storage.endpoint_url:
            _validate_http_url("ZENGARDEN_R2_ENDPOINT_URL", self.storage.endpoint_url)


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
