import logging
from pathlib import Path

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .exceptions import StorageError
from .utils import content_type_for

logger = logging.getLogger(__name__)

_client = None


def get_s3_client():
    """
    SDK client for server-side upload/download. Built once per process and
    reused between jobs.
    """
    global _client
    if _client is None:
        session = boto3.session.Session(
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
        )
        _client = session.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. https://<account>.r2.cloudflarestorage.com
            config=BotoConfig(
                s3={"addressing_style": "path"},
                signature_version="s3v4",
                retries={"max_attempts": settings.S3_MAX_ATTEMPTS, "mode": "standard"},
            ),
        )
    return _client


def object_url(key: str) -> str:
    """Public URL of an object, served from S3_PUBLIC_URL (CDN / r2.dev domain)."""
    return f"{settings.S3_PUBLIC_URL}/{key.lstrip('/')}"


def download_file(key: str, local_path) -> Path:
    """
    Stream one object to local_path, creating parent directories as needed.
    Missing keys and network errors raise StorageError.
    """
    local_path = Path(local_path)
    local_path.parent.mkdir(parents=True, exist_ok=True)
    s3 = get_s3_client()
    try:
        # download_file streams in chunks (multipart for large sources)
        s3.download_file(settings.S3_BUCKET, key, str(local_path))
    except (BotoCoreError, ClientError) as e:
        raise StorageError(f"Download of s3://{settings.S3_BUCKET}/{key} failed: {e}") from e
    return local_path


def upload_file(local_path, key: str, content_type: str | None = None):
    """
    Upload a single file to S3/R2 with an optional Content-Type.
    """
    s3 = get_s3_client()
    extra = {}
    if content_type:
        extra["ContentType"] = content_type
    try:
        s3.upload_file(str(local_path), settings.S3_BUCKET, key, ExtraArgs=extra or None)
    except (BotoCoreError, ClientError) as e:
        raise StorageError(f"Upload of {local_path} to {key} failed: {e}") from e


def upload_dir(local_dir, key_prefix: str) -> list[str]:
    """
    Recursively upload all files under local_dir to bucket with prefix key_prefix.
    Files go up sorted by relative path, so a retried job re-puts the same keys
    in the same order; overwriting an already uploaded object is harmless.
    Returns the uploaded keys.
    """
    base = Path(local_dir)
    prefix = key_prefix.rstrip("/")
    files = sorted((p for p in base.rglob("*") if p.is_file()), key=lambda p: p.relative_to(base).as_posix())

    keys = []
    for p in files:
        rel = p.relative_to(base).as_posix()  # Windows safety
        key = f"{prefix}/{rel}"
        upload_file(p, key, content_type=content_type_for(p))
        keys.append(key)

    logger.info("Uploaded %d files under %s", len(keys), prefix)
    return keys


def object_exists(key: str) -> bool:
    s3 = get_s3_client()
    try:
        s3.head_object(Bucket=settings.S3_BUCKET, Key=key)
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in ("404", "NoSuchKey", "NotFound"):
            return False
        raise StorageError(f"HEAD {key} failed: {e}") from e
    except BotoCoreError as e:
        raise StorageError(f"HEAD {key} failed: {e}") from e
    return True


def delete_object(key: str):
    s3 = get_s3_client()
    try:
        s3.delete_object(Bucket=settings.S3_BUCKET, Key=key)
    except (BotoCoreError, ClientError) as e:
        raise StorageError(f"Delete of {key} failed: {e}") from e
