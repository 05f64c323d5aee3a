"""Runtime configuration read from environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


def _optional(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _optional(env, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class StorageSettings:
    account_id: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    bucket: str | None = None
    endpoint_url: str | None = None
    public_base_url: str | None = None
    upload_url_expiry: int = 3600

    def missing(self) -> list[str]:
        required = {
            "CLOUDFLARE_ACCOUNT_ID": self.account_id,
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "S3_BUCKET": self.bucket,
        }
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True, slots=True)
class AutomationSettings:
    transcribe_url: str | None = None
    transcription_status_url: str | None = None
    generate_url: str | None = None
    publish_url: str | None = None
    webhook_secret: str | None = None
    timeout: float = 120.0


@dataclass(frozen=True, slots=True)
class Settings:
    storage: StorageSettings = field(default_factory=StorageSettings)
    automation: AutomationSettings = field(default_factory=AutomationSettings)
    callback_secret: str | None = None
    jwt_secret: str | None = None
    admin_email: str | None = None
    admin_password: str | None = None
    workflow_store: str = "memory"
    data_root: str | None = None
    job_store: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    job_ttl_seconds: float = 600.0
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 60
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env

        storage = StorageSettings(
            account_id=_optional(env, "CLOUDFLARE_ACCOUNT_ID"),
            access_key_id=_optional(env, "AWS_ACCESS_KEY_ID"),
            secret_access_key=_optional(env, "AWS_SECRET_ACCESS_KEY"),
            bucket=_optional(env, "S3_BUCKET"),
            endpoint_url=_optional(env, "R2_ENDPOINT"),
            public_base_url=_optional(env, "S3_PUBLIC_URL"),
        )
        automation = AutomationSettings(
            transcribe_url=_optional(env, "N8N_TRANSCRIBE_WEBHOOK"),
            transcription_status_url=_optional(env, "N8N_TRANSCRIPTION_STATUS_WEBHOOK"),
            generate_url=_optional(env, "N8N_GENERATE_WEBHOOK"),
            publish_url=_optional(env, "N8N_PUBLISH_WEBHOOK"),
            webhook_secret=_optional(env, "WEBHOOK_SECRET"),
            timeout=_number(env, "PODFLOW_HTTP_TIMEOUT_SECONDS", 120.0),
        )

        origins_env = env.get("API_CORS_ORIGINS", "")
        origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())

        return cls(
            storage=storage,
            automation=automation,
            callback_secret=_optional(env, "CALLBACK_SECRET"),
            jwt_secret=_optional(env, "JWT_SECRET"),
            admin_email=_optional(env, "ADMIN_EMAIL"),
            admin_password=_optional(env, "ADMIN_PASS"),
            workflow_store=(_optional(env, "PODFLOW_WORKFLOW_STORE") or "memory").lower(),
            data_root=_optional(env, "PODFLOW_DATA_ROOT"),
            job_store=(_optional(env, "PODFLOW_JOB_STORE") or "memory").lower(),
            redis_url=_optional(env, "REDIS_URL") or "redis://localhost:6379/0",
            job_ttl_seconds=_number(env, "PODFLOW_JOB_TTL_SECONDS", 600.0),
            poll_interval_seconds=_number(env, "PODFLOW_POLL_INTERVAL_SECONDS", 2.0),
            poll_max_attempts=int(_number(env, "PODFLOW_POLL_MAX_ATTEMPTS", 60)),
            cors_origins=origins or DEFAULT_CORS_ORIGINS,
            log_level=(_optional(env, "LOG_LEVEL") or "INFO").upper(),
        )
