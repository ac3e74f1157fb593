import abc
import logging
import time
from dataclasses import dataclass

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

PUBLIC_READ = "public-read"

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class BlobStoreError(Exception):
    """The backing object store failed to complete a request."""


class ObjectNotFound(BlobStoreError):
    pass


@dataclass(frozen=True)
class ObjectInfo:
    size: int
    content_type: str


class BlobStore(abc.ABC):
    """put / head / delete against the object store backing every partition."""

    @abc.abstractmethod
    def put_object(
        self, path: str, data: bytes, *, content_type: str, acl: str = PUBLIC_READ
    ) -> None:
        ...

    @abc.abstractmethod
    def head_object(self, path: str) -> ObjectInfo:
        """Raises ObjectNotFound when nothing is stored at ``path``."""

    @abc.abstractmethod
    def delete_object(self, path: str) -> None:
        """Deleting a missing object is not an error."""


def _is_not_found(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


class S3BlobStore(BlobStore):
    def __init__(
        self,
        bucket: str,
        *,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str = "",
    ) -> None:
        self.bucket = bucket
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    @classmethod
    def from_settings(cls, settings) -> "S3BlobStore":
        return cls(
            settings.AWS_BUCKET_NAME,
            region=settings.AWS_REGION,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            endpoint_url=settings.AWS_ENDPOINT,
        )

    def put_object(
        self, path: str, data: bytes, *, content_type: str, acl: str = PUBLIC_READ
    ) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                ACL=acl,
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"put {path!r} failed: {exc}") from exc

    def head_object(self, path: str) -> ObjectInfo:
        try:
            resp = self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if _is_not_found(exc):
                raise ObjectNotFound(path) from exc
            raise BlobStoreError(f"head {path!r} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"head {path!r} failed: {exc}") from exc
        return ObjectInfo(
            size=int(resp.get("ContentLength", 0)),
            content_type=resp.get("ContentType", "application/octet-stream"),
        )

    def delete_object(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if _is_not_found(exc):
                return
            raise BlobStoreError(f"delete {path!r} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"delete {path!r} failed: {exc}") from exc

    def wait_until_ready(self, max_attempts: int = 30, sleep_s: float = 1.0) -> None:
        last_exc = None
        for _ in range(max_attempts):
            try:
                self._client.list_buckets()
                return
            except Exception as exc:
                last_exc = exc
                time.sleep(sleep_s)
        raise RuntimeError(f"Object store not ready after {max_attempts} attempts: {last_exc}")

    def ensure_bucket_exists(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError:
            logger.info("Creating bucket %s", self.bucket)
            self._client.create_bucket(Bucket=self.bucket)
