"""
S3 utility functions for audio playback.
Generates presigned URLs for private bucket access.
"""
import boto3
from typing import Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from .config import config
from .logging import logger

_s3_client = None


def get_s3_client():
    """S3 client with s3v4 signatures for presigned URLs."""
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client(
            's3',
            region_name=config.AWS_REGION,
            config=BotoConfig(signature_version='s3v4')
        )
    return _s3_client


def reset_client() -> None:
    global _s3_client
    _s3_client = None


def audio_url(
    storage_ref: str,
    expiration: Optional[int] = None,
    bucket_name: Optional[str] = None
) -> Optional[str]:
    """
    Resolve a work item's storageRef to a presigned GET URL.

    Args:
        storage_ref: The S3 object key (e.g., 'recordings/fr/uuid.webm')
        expiration: URL expiration time in seconds (default AUDIO_URL_EXPIRATION)
        bucket_name: Optional bucket name, defaults to config.MEDIA_BUCKET

    Returns:
        Presigned URL, the reference itself when it is already an external
        URL, or None when it cannot be signed
    """
    if not storage_ref:
        return None

    bucket = bucket_name or config.MEDIA_BUCKET

    if storage_ref.startswith('http://') or storage_ref.startswith('https://'):
        bucket_url = f"https://{bucket}.s3.amazonaws.com/" if bucket else None
        if bucket_url and storage_ref.startswith(bucket_url):
            storage_ref = storage_ref[len(bucket_url):]
        else:
            # External URL, nothing to sign
            return storage_ref

    if not bucket:
        logger.warning("No MEDIA_BUCKET configured, cannot sign audio URL")
        return None

    try:
        return get_s3_client().generate_presigned_url(
            'get_object',
            Params={'Bucket': bucket, 'Key': storage_ref},
            ExpiresIn=expiration or config.AUDIO_URL_EXPIRATION
        )
    except ClientError as e:
        logger.error(f"Error generating presigned URL for {storage_ref}: {e}")
        return None
