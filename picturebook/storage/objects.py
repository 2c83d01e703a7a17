"""
Object Storage bindings with idempotent overwrite at stable paths.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from picturebook.common.errors import StorageFailure
from picturebook.common.keys import normalize_key, strip_query

logger = logging.getLogger(__name__)


def illustration_path(project_id: str, page: int, revision: int = 0) -> str:
    """
    Stable path of a page illustration.

    The first render of a page lives at ``illustrations/{id}-page-{n}.png``; each
    regeneration gets its own revision suffix so history entries stay resolvable.
    """
    if revision <= 0:
        return f"illustrations/{project_id}-page-{page}.png"
    return f"illustrations/{project_id}-page-{page}-rev-{revision}.png"


_ILLUSTRATION_NAME = re.compile(r"-page-\d+(?:-rev-(\d+))?\.png$")


def illustration_revision(url: str | None) -> int | None:
    """Revision slot encoded in an illustration URL, or ``None`` for foreign URLs."""
    match = _ILLUSTRATION_NAME.search(strip_query(url))
    if match is None:
        return None
    return int(match.group(1) or 0)


def character_model_path(project_id: str, character_key: str | None = None) -> str:
    if not character_key:
        return f"character_models/{project_id}.png"
    return f"character_models/{project_id}-{normalize_key(character_key)}.png"


def source_photo_path(project_id: str, character_key: str, extension: str) -> str:
    ext = extension.lower().lstrip(".") or "jpg"
    return f"source_photos/{project_id}/{normalize_key(character_key)}.{ext}"


def prop_photo_path(project_id: str, prop_key: str, extension: str) -> str:
    ext = extension.lower().lstrip(".") or "jpg"
    return f"prop_photos/{project_id}/{normalize_key(prop_key)}.{ext}"


class ObjectStorage(ABC):
    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        """Store ``data`` at ``path`` (overwriting) and return its public URL."""


class InMemoryObjectStorage(ObjectStorage):
    """Keeps objects in a dict; URLs are ``{base_url}/{path}``."""

    def __init__(self, base_url: str = "https://objects.invalid") -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self._base_url = base_url.rstrip("/")

    def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        self.objects[path] = (bytes(data), content_type)
        return f"{self._base_url}/{path}"


class LocalObjectStorage(ObjectStorage):
    """
    Writes objects under a local directory.

    When ``public_base_url`` is set, URLs are ``{public_base_url}/{path}``; otherwise
    they are ``file://`` URIs of the written file.
    """

    def __init__(self, root: str | Path, *, public_base_url: str | None = None) -> None:
        self._root = Path(root).expanduser().resolve()
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        target = self._root / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageFailure(f"Could not store object at '{path}'.") from exc
        if self._public_base_url:
            return f"{self._public_base_url}/{path}"
        return target.as_uri()


class R2ObjectStorage(ObjectStorage):
    """
    S3-compatible storage (Cloudflare R2) through boto3.
    """

    def __init__(
        self,
        *,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str = "book-images",
        public_url: str | None = None,
        client=None,
    ) -> None:
        self.bucket_name = bucket_name
        self.endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"
        self.public_url = public_url.rstrip("/") if public_url else None
        self._client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )
        logger.info("R2 storage initialized for bucket: %s", bucket_name)

    def put(self, path: str, data: bytes, content_type: str = "image/png") -> str:
        try:
            self._client.upload_fileobj(
                BytesIO(data),
                self.bucket_name,
                path,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageFailure(f"Upload to '{path}' failed.") from exc
        if self.public_url:
            return f"{self.public_url}/{path}"
        return f"{self.endpoint_url}/{self.bucket_name}/{path}"
