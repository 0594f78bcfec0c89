from __future__ import annotations

from pathlib import Path

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings
from app.core.errors import StorageError


_MISSING_CODES = {"404", "nosuchbucket", "notfound", "nosuchkey"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "")).lower()


def _client(settings: Settings, endpoint_url: str):
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        region_name=settings.s3_region,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class ObjectStorage:
    """S3/MinIO access for originals and derived renditions.

    Presigned upload URLs are signed against the public endpoint so the
    signature stays valid for clients outside the cluster; everything else
    goes through the internal endpoint.
    """

    def __init__(self, settings: Settings, client=None, presign_client=None) -> None:
        self.settings = settings
        self.client = client or _client(settings, settings.s3_endpoint_url)
        if presign_client is not None:
            self.presign_client = presign_client
        elif settings.presign_endpoint_url != settings.s3_endpoint_url:
            self.presign_client = _client(settings, settings.presign_endpoint_url)
        else:
            self.presign_client = self.client
        self._checked_buckets: set[str] = set()

    def ensure_bucket(self, bucket: str) -> None:
        if bucket in self._checked_buckets:
            return

        try:
            self.client.head_bucket(Bucket=bucket)
            self._checked_buckets.add(bucket)
            return
        except ClientError as exc:
            if _error_code(exc) not in _MISSING_CODES:
                raise StorageError(f"Failed to check bucket {bucket}") from exc

        create_args = {"Bucket": bucket}
        region = str(self.settings.s3_region or "").strip()
        if region and region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": region}
        try:
            self.client.create_bucket(**create_args)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to create bucket {bucket}") from exc
        self._checked_buckets.add(bucket)

    def presigned_put_url(self, bucket: str, object_key: str, content_type: str, expires_seconds: int) -> str:
        try:
            return self.presign_client.generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": object_key, "ContentType": content_type},
                ExpiresIn=expires_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Failed to generate presigned upload URL") from exc

    def presigned_get_url(self, bucket: str, object_key: str, expires_seconds: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": object_key},
                ExpiresIn=expires_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("Failed to generate presigned download URL") from exc

    def delete_object(self, bucket: str, object_key: str) -> None:
        try:
            self.client.delete_object(Bucket=bucket, Key=object_key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete {bucket}/{object_key}") from exc

    def download_file(self, bucket: str, object_key: str, dest: Path) -> None:
        try:
            self.client.download_file(bucket, object_key, str(dest))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise FileNotFoundError(f"{bucket}/{object_key}") from exc
            raise StorageError(f"Failed to download {bucket}/{object_key}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to download {bucket}/{object_key}") from exc

    def upload_file(self, bucket: str, object_key: str, source: Path, content_type: str) -> None:
        try:
            self.client.upload_file(
                str(source),
                bucket,
                object_key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError, S3UploadFailedError) as exc:
            raise StorageError(f"Failed to upload {bucket}/{object_key}") from exc
