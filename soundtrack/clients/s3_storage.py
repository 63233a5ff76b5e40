from __future__ import annotations

import pathlib
from collections import OrderedDict
from uuid import uuid4

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError


class S3StorageClient:
    """Blob storage for uploaded videos.

    Without credentials, objects are kept in memory (oldest evicted once
    ``memory_limit_bytes`` is exceeded) and addressed through the
    same public URL scheme, which is enough for local runs and tests.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
        memory_limit_bytes: int = 1024 * 1024 * 1024,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self.memory_limit_bytes = memory_limit_bytes
        self._memory: OrderedDict[str, bytes] = OrderedDict()
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()}
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    def upload_bytes(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        key = self._normalize_path(path)
        if not self.is_configured() or self._client is None:
            self._remember(key, content)
            return self.public_url(key)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
            raise ValueError(f"S3 upload failed: {exc}") from exc
        return self.public_url(key)

    def _remember(self, key: str, content: bytes) -> None:
        if len(content) > self.memory_limit_bytes:
            raise ValueError("Upload exceeds the in-memory storage limit; configure S3")
        self._memory.pop(key, None)
        used = sum(len(blob) for blob in self._memory.values())
        while self._memory and used + len(content) > self.memory_limit_bytes:
            _, evicted = self._memory.popitem(last=False)
            used -= len(evicted)
        self._memory[key] = content

    def stored_bytes(self, path: str) -> bytes | None:
        return self._memory.get(self._normalize_path(path))

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        if self.public_url_base:
            return f"{self.public_url_base}/{clean}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{clean}"
        return f"/{self.bucket}/{clean}"

    @staticmethod
    def with_random_suffix(path: str) -> str:
        pure = pathlib.PurePosixPath(path)
        return str(pure.with_name(f"{pure.stem}-{uuid4().hex[:12]}{pure.suffix}"))

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
