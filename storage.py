import logging
import mimetypes
import uuid

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import UploadFile

from settings import (
    S3_ACCESS_KEY,
    S3_BUCKET_NAME,
    S3_ENDPOINT_URL,
    S3_PUBLIC_BASE,
    S3_REGION,
    S3_SECRET_KEY,
)

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}

_client = None


class StorageError(Exception):
    pass


class UnsupportedFileType(StorageError):
    pass


def get_client():
    global _client
    if _client is None:
        _client = boto3.client(
            "s3",
            endpoint_url=S3_ENDPOINT_URL,
            aws_access_key_id=S3_ACCESS_KEY or None,
            aws_secret_access_key=S3_SECRET_KEY or None,
            region_name=S3_REGION,
            config=BotoConfig(signature_version="s3v4"),
        )
    return _client


def public_url(key: str) -> str:
    if S3_PUBLIC_BASE:
        return f"{S3_PUBLIC_BASE}/{key}"
    return f"https://{S3_BUCKET_NAME}.s3.{S3_REGION}.amazonaws.com/{key}"


def upload_file(upload: UploadFile, folder: str) -> str:
    """Store an uploaded image and return its public URL."""
    content_type = upload.content_type or mimetypes.guess_type(upload.filename or "")[0]
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise UnsupportedFileType(f"Unsupported file type: {content_type}")
    ext = mimetypes.guess_extension(content_type) or ""
    key = f"{folder}/{uuid.uuid4().hex}{ext}"
    try:
        get_client().upload_fileobj(
            upload.file,
            S3_BUCKET_NAME,
            key,
            ExtraArgs={"ContentType": content_type},
        )
    except (BotoCoreError, ClientError) as e:
        logger.error("S3 upload of %s failed: %s", upload.filename, e)
        raise StorageError("File upload failed") from e
    return public_url(key)
