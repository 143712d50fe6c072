from __future__ import annotations

import io
import os

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..core.config import settings
from ..models.exceptions import StorageException


def _s3_client():
    # Allow local S3-compatible endpoint (e.g., MinIO) via S3_ENDPOINT_URL
    endpoint_url = (
        os.getenv("S3_ENDPOINT_URL")
        or (f"https://{settings.r2_account_id}.r2.cloudflarestorage.com" if settings.r2_account_id else None)
    )
    if not (settings.r2_access_key_id and settings.r2_secret_access_key and endpoint_url):
        raise StorageException("configure", storage_backend="s3", details={"reason": "S3/R2 credentials are not configured"})
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


def put_object(key: str, data: bytes, content_type: str = "image/png") -> None:
    s3 = _s3_client()
    try:
        # Conditional write: the store rejects the put if the key exists
        s3.put_object(
            Bucket=settings.storage_bucket,
            Key=key,
            Body=io.BytesIO(data),
            ContentType=content_type,
            IfNoneMatch="*",
        )
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        reason = "object_exists" if code in ("PreconditionFailed", "ConditionalRequestConflict") else code or str(e)
        raise StorageException("put", key=key, storage_backend="s3", details={"reason": reason})
    except BotoCoreError as e:
        raise StorageException("put", key=key, storage_backend="s3", details={"reason": str(e)})


def presign_get_url(key: str, expires_seconds: int = 900) -> str:
    s3 = _s3_client()
    return s3.generate_presigned_url(
        ClientMethod="get_object",
        Params={"Bucket": settings.storage_bucket, "Key": key},
        ExpiresIn=expires_seconds,
    )


def public_url(key: str) -> str:
    # The bucket is public; fall back to a presigned URL when no public
    # base URL is configured.
    if settings.storage_public_base_url:
        return f"{settings.storage_public_base_url.rstrip('/')}/{key}"
    return presign_get_url(key, expires_seconds=7 * 24 * 3600)
