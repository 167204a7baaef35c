from __future__ import annotations

import logging
from typing import Sequence

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..domain.errors import StorageError

LOGGER = logging.getLogger(__name__)

_MISSING_UPLOAD_CODES = {"NoSuchUpload", "404"}
_MISSING_OBJECT_CODES = {"NoSuchKey", "NotFound", "404"}


def create_s3_client(
    *,
    endpoint_url: str,
    region_name: str,
    access_key: str,
    secret_key: str,
    timeout_seconds: int = 60,
):
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name=region_name,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=BotoConfig(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
            connect_timeout=timeout_seconds,
            read_timeout=timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        ),
    )


def _error_code(exc: Exception) -> str | None:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class MinioMultipartStorage:
    """S3 multipart API (MinIO, R2, AWS) behind the coordinator's storage port.

    No retries happen here; botocore is configured for a single attempt.
    """

    def __init__(self, *, client, bucket_name: str) -> None:
        self._client = client
        self._bucket_name = bucket_name

    def open(self, *, storage_key: str, content_type: str) -> str:
        try:
            response = self._client.create_multipart_upload(
                Bucket=self._bucket_name,
                Key=storage_key,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._storage_error("initialize multipart upload", exc) from exc
        return response["UploadId"]

    def put_part(
        self,
        *,
        storage_key: str,
        remote_multipart_id: str,
        part_number: int,
        data: bytes,
    ) -> str:
        try:
            response = self._client.upload_part(
                Bucket=self._bucket_name,
                Key=storage_key,
                UploadId=remote_multipart_id,
                PartNumber=part_number,
                Body=data,
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._storage_error("upload part", exc) from exc
        return response["ETag"]

    def finalize(
        self,
        *,
        storage_key: str,
        remote_multipart_id: str,
        parts: Sequence[tuple[int, str]],
    ) -> None:
        try:
            self._client.complete_multipart_upload(
                Bucket=self._bucket_name,
                Key=storage_key,
                UploadId=remote_multipart_id,
                MultipartUpload={
                    "Parts": [
                        {"ETag": etag, "PartNumber": part_no} for part_no, etag in parts
                    ]
                },
            )
        except ClientError as exc:
            if _error_code(exc) in _MISSING_UPLOAD_CODES and self._object_exists(
                storage_key
            ):
                LOGGER.info("Multipart upload for %s was already finalized", storage_key)
                return
            raise self._storage_error("finalize multipart upload", exc) from exc
        except BotoCoreError as exc:
            raise self._storage_error("finalize multipart upload", exc) from exc

    def abort(self, *, storage_key: str, remote_multipart_id: str) -> None:
        try:
            self._client.abort_multipart_upload(
                Bucket=self._bucket_name,
                Key=storage_key,
                UploadId=remote_multipart_id,
            )
        except ClientError as exc:
            if _error_code(exc) in _MISSING_UPLOAD_CODES:
                LOGGER.info("Multipart upload for %s already gone", storage_key)
                return
            raise self._storage_error("abort multipart upload", exc) from exc
        except BotoCoreError as exc:
            raise self._storage_error("abort multipart upload", exc) from exc

    def _object_exists(self, storage_key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket_name, Key=storage_key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_OBJECT_CODES:
                return False
            raise self._storage_error("look up finalized object", exc) from exc
        except BotoCoreError as exc:
            raise self._storage_error("look up finalized object", exc) from exc
        return True

    def _storage_error(self, action: str, exc: Exception) -> StorageError:
        LOGGER.error("Failed to %s for %s: %s", action, self._bucket_name, exc)
        details = {}
        code = _error_code(exc)
        if code:
            details["remote_code"] = code
        return StorageError(f"Failed to {action}", details)
