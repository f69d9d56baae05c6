import logging
import string
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from filegate.core.exceptions import NotFound, PayloadTooLarge, StorageFault
from filegate.storage.base import (
    DEFAULT_CONTENT_TYPE,
    STREAM_CHUNK_SIZE,
    FileInfo,
    PathKeyedStore,
)
from filegate.storage.key_safety import validate_key

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
# User metadata must be ASCII; everything but "%" and non-ASCII passes through
_METADATA_SAFE = "".join(c for c in string.punctuation if c != "%") + " "


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def create_s3_client(access_key_id: str, secret_access_key: str, region: str):
    return boto3.client(
        "s3",
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region,
    )


class S3ObjectStore(PathKeyedStore):
    """
    Path-keyed store over an S3 bucket.

    Keys are object keys; the upload metadata travels as S3 user metadata
    (lower-cased by S3) instead of a JSON sidecar.
    """

    def __init__(self, client, bucket: str, presigned_expires: int = 3600):
        super().__init__()
        self.client = client
        self.bucket = bucket
        self.presigned_expires = presigned_expires

    @property
    def bucket_name(self) -> str:
        return self.bucket

    @property
    def presigned_url_expires(self) -> Optional[int]:
        return self.presigned_expires

    def init(self) -> None:
        """Make sure the bucket exists, creating it when S3 reports 404"""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"S3 bucket {self.bucket!r} exists")
            return
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND_CODES:
                logger.error(f"Error checking bucket {self.bucket!r}: {e}")
                raise StorageFault(f"Cannot access bucket {self.bucket}: {e}") from e

        logger.warning(f"Bucket {self.bucket!r} does not exist. Creating...")
        try:
            self.client.create_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to create bucket {self.bucket!r}: {e}")
            raise StorageFault(f"Cannot create bucket {self.bucket}: {e}") from e
        logger.info(f"Bucket {self.bucket!r} created")

    def put(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        metadata: Dict[str, Any],
        max_bytes: Optional[int] = None,
    ) -> int:
        key = validate_key(key)
        body = data if isinstance(data, (bytes, bytearray)) else data.read()
        if max_bytes is not None and len(body) > max_bytes:
            raise PayloadTooLarge()

        user_metadata = {
            name: quote(str(value), safe=_METADATA_SAFE)
            for name, value in {**metadata, "size": len(body)}.items()
            if name != "contentType" and value is not None
        }
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=metadata.get("contentType") or DEFAULT_CONTENT_TYPE,
                Metadata=user_metadata,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {key} to S3: {e}")
            raise StorageFault(f"Failed to upload {key}: {e}") from e
        return len(body)

    @staticmethod
    def _decode_metadata(metadata: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {name: unquote(value) for name, value in (metadata or {}).items()}

    @staticmethod
    def _original_name(metadata: Dict[str, str], key: str) -> str:
        # S3 returns user metadata keys lower-cased
        return metadata.get("originalname") or metadata.get("originalName") or key

    def get(self, key: str) -> Optional[FileInfo]:
        key = validate_key(key)
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise StorageFault(f"Failed to read {key}: {e}") from e

        metadata = self._decode_metadata(head.get("Metadata"))
        return FileInfo(
            key=key,
            size=head.get("ContentLength", 0),
            last_modified=head["LastModified"],
            etag=head.get("ETag", '""'),
            content_type=head.get("ContentType") or DEFAULT_CONTENT_TYPE,
            original_name=self._original_name(metadata, key),
            metadata=metadata,
        )

    def list(self) -> List[FileInfo]:
        files = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket):
                for item in page.get("Contents", []):
                    files.append(
                        FileInfo(
                            key=item["Key"],
                            size=item.get("Size", 0),
                            last_modified=item["LastModified"],
                            etag=item.get("ETag", '""'),
                            original_name=item["Key"],
                        )
                    )
        except (ClientError, BotoCoreError):
            logger.exception(f"Listing failed for bucket {self.bucket!r}")
            return []
        return sorted(files, key=lambda info: info.last_modified, reverse=True)

    def delete(self, key: str) -> None:
        key = validate_key(key)
        try:
            # S3 treats deleting an absent key as success
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return
            logger.error(f"Failed to delete {key} from S3: {e}")
            raise StorageFault(f"Failed to delete {key}: {e}") from e

    def open(self, key: str) -> Tuple[FileInfo, Iterator[bytes]]:
        key = validate_key(key)
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFound() from e
            raise StorageFault(f"Failed to download {key}: {e}") from e

        metadata = self._decode_metadata(obj.get("Metadata"))
        info = FileInfo(
            key=key,
            size=obj.get("ContentLength", 0),
            last_modified=obj["LastModified"],
            etag=obj.get("ETag", '""'),
            content_type=obj.get("ContentType") or DEFAULT_CONTENT_TYPE,
            original_name=self._original_name(metadata, key),
            metadata=metadata,
        )
        return info, obj["Body"].iter_chunks(chunk_size=STREAM_CHUNK_SIZE)

    def presigned_url(self, key: str) -> Optional[str]:
        key = validate_key(key)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presigned_expires,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageFault(f"Failed to sign URL for {key}: {e}") from e
