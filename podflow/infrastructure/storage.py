"""Upload delegation to an S3-compatible bucket (Cloudflare R2)."""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from podflow.core.errors import ConfigurationError, UpstreamError, ValidationError
from podflow.core.settings import StorageSettings

logger = logging.getLogger(__name__)

KEY_PREFIX = "podcasts"
MAX_UPLOAD_BYTES = int(1.5 * 1024 * 1024 * 1024)
ALLOWED_CONTENT_TYPES = frozenset({"video/mp4", "video/quicktime", "audio/mpeg", "audio/mp3"})
ALLOWED_SUFFIXES = frozenset({".mp4", ".mov", ".mp3"})
PUBLIC_FALLBACK_WARNING = (
    "S3_PUBLIC_URL is not configured; the read URL uses the provider default "
    "and may not be publicly reachable until public access is enabled on the bucket"
)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitise_filename(filename: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", filename)


def build_object_key(filename: str, now_ms: int | None = None) -> str:
    timestamp = int(time.time() * 1000) if now_ms is None else now_ms
    return f"{KEY_PREFIX}/{timestamp}-{sanitise_filename(filename)}"


def validate_media(filename: str, content_type: str | None, size: int | None = None) -> None:
    """Reject files the transcription workflow cannot take."""

    suffix = PurePosixPath(filename).suffix.lower()
    if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES and suffix not in ALLOWED_SUFFIXES:
        raise ValidationError("Invalid file type. Please upload .mp4, .mov, or .mp3 files.")
    if size is not None and size > MAX_UPLOAD_BYTES:
        raise ValidationError("File size exceeds 1.5GB limit.")


@dataclass(slots=True)
class UploadDestination:
    write_url: str
    read_url: str
    key: str
    warning: str | None = None


@dataclass(slots=True)
class StoredObject:
    read_url: str
    key: str
    warning: str | None = None


class ObjectStorage:
    """Produces presigned write URLs and public read URLs for uploaded media."""

    def __init__(
        self,
        settings: StorageSettings,
        *,
        s3_client: Any | None = None,
        http_client: httpx.Client | None = None,
        upload_timeout: float = 300.0,
    ) -> None:
        self._settings = settings
        self._s3_client = s3_client
        self._http = http_client or httpx.Client(timeout=upload_timeout)
        self._owns_http = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _require_configuration(self) -> None:
        missing = self._settings.missing()
        if missing:
            raise ConfigurationError(f"Storage not configured: missing {', '.join(missing)}")

    @property
    def endpoint_url(self) -> str:
        if self._settings.endpoint_url:
            return self._settings.endpoint_url
        return f"https://{self._settings.account_id}.r2.cloudflarestorage.com"

    def _client(self) -> Any:
        self._require_configuration()
        if self._s3_client is None:
            self._s3_client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self._settings.access_key_id,
                aws_secret_access_key=self._settings.secret_access_key,
                region_name="auto",
                config=BotoConfig(
                    signature_version="s3v4",
                    request_checksum_calculation="when_required",
                ),
            )
        return self._s3_client

    def public_url(self, key: str) -> tuple[str, str | None]:
        """Return the read URL for ``key`` and a warning when it is only a provider default."""

        base = self._settings.public_base_url
        if base:
            return f"{base.rstrip('/')}/{key}", None
        self._require_configuration()
        logger.warning("Falling back to the r2.dev URL for %s: S3_PUBLIC_URL is not set", key)
        return f"https://pub-{self._settings.account_id}.r2.dev/{key}", PUBLIC_FALLBACK_WARNING

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def request_upload_destination(self, filename: str, content_type: str) -> UploadDestination:
        if not filename or not content_type:
            raise ValidationError("Missing required fields: filename and contentType")
        client = self._client()
        key = build_object_key(filename)
        try:
            write_url = client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self._settings.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self._settings.upload_url_expiry,
            )
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamError("storage", f"could not sign upload URL: {exc}") from exc
        read_url, warning = self.public_url(key)
        logger.info("Issued upload URL for %s (expires in %ss)", key, self._settings.upload_url_expiry)
        return UploadDestination(write_url=write_url, read_url=read_url, key=key, warning=warning)

    def transfer_bytes(self, write_url: str, data: bytes, content_type: str) -> None:
        """Single-shot PUT to a presigned URL; any failure fails the whole upload."""

        if len(data) > MAX_UPLOAD_BYTES:
            raise ValidationError("File size exceeds 1.5GB limit.")
        try:
            response = self._http.put(write_url, content=data, headers={"Content-Type": content_type})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise UpstreamError("storage", f"upload transfer failed: {exc}") from exc

    def put_object(self, filename: str, data: bytes, content_type: str) -> StoredObject:
        if not filename or not content_type:
            raise ValidationError("Missing required fields: filename and contentType")
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValidationError("File size exceeds 1.5GB limit.")
        client = self._client()
        key = build_object_key(filename)
        try:
            client.put_object(Bucket=self._settings.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise UpstreamError("storage", f"upload failed for {key!r}: {exc}") from exc
        read_url, warning = self.public_url(key)
        logger.info("Stored %s (%d bytes)", key, len(data))
        return StoredObject(read_url=read_url, key=key, warning=warning)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()
