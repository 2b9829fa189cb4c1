"""S3-compatible object storage client for Cloudflare R2."""

from __future__ import annotations

import json
import logging
from typing import Any

import boto3
from botocore.config import Config

from zengarden.clients.base import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


class R2Storage:
    """Upload objects to an R2 bucket and return their public URLs.

    The boto3 client is built on first use so a worker without storage
    credentials still starts; the missing configuration surfaces as a
    stage failure instead.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str,
        public_url: str,
        endpoint_url: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: Any | None = None,
    ) -> None:
        self._account_id = account_id
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._bucket_name = bucket_name
        self._public_url = public_url.rstrip("/")
        self._endpoint_url = endpoint_url
        self._timeout_seconds = timeout_seconds
        self._client = client

    def put_object(self, data: bytes, *, key: str, content_type: str) -> str:
        client = self._get_client()
        client.put_object(
            Bucket=self._bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        logger.debug("Uploaded %d bytes to %s/%s", len(data), self._bucket_name, key)
        return f"{self._public_url}/{key}"

    def put_json(self, document: dict[str, Any], *, key: str) -> str:
        body = json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")
        return self.put_object(body, key=key, content_type="application/json")

    def _get_client(self) -> Any:
        self._check_configured()
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._resolve_endpoint(),
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                region_name="auto",
                config=Config(
                    connect_timeout=min(self._timeout_seconds, 10.0),
                    read_timeout=self._timeout_seconds,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        return self._client

    def _check_configured(self) -> None:
        missing = [
            name
            for name, value in (
                ("R2_ACCESS_KEY_ID", self._access_key_id),
                ("R2_SECRET_ACCESS_KEY", self._secret_access_key),
                ("R2_BUCKET_NAME", self._bucket_name),
                ("R2_PUBLIC_URL", self._public_url),
            )
            if not value
        ]
        if not self._account_id and not self._endpoint_url:
            missing.insert(0, "R2_ACCOUNT_ID")
        if missing:
            raise ConfigurationError(f"R2 storage not configured: missing {', '.join(missing)}")

    def _resolve_endpoint(self) -> str:
        if self._endpoint_url:
            return self._endpoint_url
        return f"https://{self._account_id}.r2.cloudflarestorage.com"
