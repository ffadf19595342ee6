import os

import boto3
from botocore.client import Config

R2_BUCKET = os.environ.get("R2_BUCKET", "")
R2_ENDPOINT = os.environ.get("R2_ENDPOINT", "")
R2_REGION = os.environ.get("R2_REGION", "auto")
R2_CDN_BASE = os.environ.get("R2_CDN_BASE", "").rstrip("/")

PASSTHROUGH_PREFIXES = ("http://", "https://", "data:")


class ImageRefError(ValueError):
    """Raised when an image reference cannot be turned into a fetchable URL."""


def r2_client():
    return boto3.client(
        "s3",
        endpoint_url=R2_ENDPOINT,
        aws_access_key_id=os.environ.get("R2_ACCESS_KEY_ID"),
        aws_secret_access_key=os.environ.get("R2_SECRET_ACCESS_KEY"),
        region_name=R2_REGION,
        config=Config(signature_version="s3v4"),
    )


def presign_get(key: str, expires: int = 900, bucket: str | None = None) -> str:
    s3 = r2_client()
    url = s3.generate_presigned_url(
        "get_object",
        Params={"Bucket": bucket or R2_BUCKET, "Key": key},
        ExpiresIn=expires,
    )
    return url


def resolve_image_url(image_ref: str, *, expires: int = 300, bucket: str | None = None) -> str:
    """Turn a stored image handle into a URL the vision model can fetch.

    Absolute and data URLs pass through untouched. Storage keys go through the
    CDN when one is configured, otherwise they are presigned for ``expires``
    seconds, which only needs to outlive a single model call.
    """
    ref = (image_ref or "").strip()
    if not ref:
        raise ImageRefError("image_ref_required")
    if ref.startswith(PASSTHROUGH_PREFIXES):
        return ref
    key = ref.lstrip("/")
    if R2_CDN_BASE:
        return f"{R2_CDN_BASE}/{key}"
    try:
        return presign_get(key, expires=expires, bucket=bucket)
    except Exception as e:
        raise ImageRefError(f"presign_failed:{e}") from e
