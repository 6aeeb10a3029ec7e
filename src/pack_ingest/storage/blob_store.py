"""Blob stores addressed by hierarchical path strings.

The pipeline uses exactly five operations: exists, open_read, write, copy
and delete. Paths are forward-slash keys such as
``assets/overlays/Neon Pack/glow.mp4``.
"""

import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Optional, Union

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BlobNotFoundError, StorageError
from ..common.path_utils import normalize_path

logger = logging.getLogger(__name__)

BlobData = Union[bytes, BinaryIO, Path]

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _clean_key(path: str) -> str:
    key = normalize_path(path).strip('/')
    if not key or any(part in ('', '.', '..') for part in key.split('/')):
        raise StorageError(f"Invalid blob path: {path!r}", path=path)
    return key


class BlobStore(ABC):
    """Object store interface used by the ingestion pipeline."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return True if an object exists at ``path``."""

    @abstractmethod
    def open_read(self, path: str) -> BinaryIO:
        """Open a forward-only readable stream over the object's bytes."""

    @abstractmethod
    def write(self, path: str, data: BlobData, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        """Create or overwrite the object at ``path``."""

    @abstractmethod
    def copy(self, source: str, destination: str) -> None:
        """Copy an object to a new path."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete an object. Missing objects are ignored."""

    def describe(self, path: str) -> str:
        """Human-readable location of ``path`` for logs and records."""
        return _clean_key(path)


class LocalBlobStore(BlobStore):
    """Blob store backed by a local directory tree.

    Writes go to a temporary file in the destination directory and are
    renamed into place, so readers never observe partial objects.
    Content types are not persisted.
    """

    def __init__(self, root: Path, chunk_size: int = 1024 * 1024):
        self.root = Path(root)
        self.chunk_size = chunk_size
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        return self.root.joinpath(*_clean_key(path).split('/'))

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def open_read(self, path: str) -> BinaryIO:
        target = self._resolve(path)
        try:
            return open(target, 'rb')
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {path}", path=path) from e
        except OSError as e:
            raise StorageError(f"Cannot read blob {path}: {e}", path=path) from e

    def write(self, path: str, data: BlobData, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix='.tmp-', suffix=target.suffix)
            try:
                with os.fdopen(fd, 'wb') as out:
                    if isinstance(data, bytes):
                        out.write(data)
                    elif isinstance(data, Path):
                        with open(data, 'rb') as src:
                            shutil.copyfileobj(src, out, self.chunk_size)
                    else:
                        shutil.copyfileobj(data, out, self.chunk_size)
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write blob {path}: {e}", path=path) from e

        logger.debug(f"Wrote blob: {{'path': {path!r}, 'content_type': {content_type!r}}}")

    def copy(self, source: str, destination: str) -> None:
        src = self._resolve(source)
        if not src.is_file():
            raise BlobNotFoundError(f"Blob not found: {source}", path=source)
        self.write(destination, src)

    def delete(self, path: str) -> None:
        try:
            self._resolve(path).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot delete blob {path}: {e}", path=path) from e

    def describe(self, path: str) -> str:
        return str(self._resolve(path))


class S3BlobStore(BlobStore):
    """Blob store backed by an S3-compatible bucket."""

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        max_pool_connections: int = 16,
        client=None,
    ):
        self.bucket = bucket
        self._client = client or self._create_client(
            region, endpoint_url, access_key_id, secret_access_key, max_pool_connections
        )

    @staticmethod
    def _create_client(region, endpoint_url, access_key_id, secret_access_key, max_pool_connections):
        """Create a boto3 S3 client.

        Without explicit keys the standard AWS credential chain is used.
        """
        boto_config = BotoConfig(
            signature_version="s3v4",
            max_pool_connections=max_pool_connections,
        )

        session_kwargs = {}
        client_kwargs = {}
        if region:
            client_kwargs["region_name"] = region
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if access_key_id and secret_access_key:
            session_kwargs["aws_access_key_id"] = access_key_id
            session_kwargs["aws_secret_access_key"] = secret_access_key

        session = boto3.Session(**session_kwargs)
        return session.client("s3", config=boto_config, **client_kwargs)

    @staticmethod
    def _is_not_found(error: ClientError) -> bool:
        code = str(error.response.get("Error", {}).get("Code", ""))
        return code in ("404", "NoSuchKey", "NotFound")

    def exists(self, path: str) -> bool:
        key = _clean_key(path)
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if self._is_not_found(e):
                return False
            raise StorageError(f"Cannot check blob {path}: {e}", path=path) from e
        except BotoCoreError as e:
            raise StorageError(f"Cannot check blob {path}: {e}", path=path) from e

    def open_read(self, path: str) -> BinaryIO:
        key = _clean_key(path)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_not_found(e):
                raise BlobNotFoundError(f"Blob not found: {path}", path=path) from e
            raise StorageError(f"Cannot read blob {path}: {e}", path=path) from e
        except BotoCoreError as e:
            raise StorageError(f"Cannot read blob {path}: {e}", path=path) from e
        return response["Body"]

    def write(self, path: str, data: BlobData, content_type: str = DEFAULT_CONTENT_TYPE) -> None:
        key = _clean_key(path)
        extra_args = {"ContentType": content_type}
        try:
            if isinstance(data, bytes):
                self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
            elif isinstance(data, Path):
                self._client.upload_file(str(data), self.bucket, key, ExtraArgs=extra_args)
            else:
                self._client.upload_fileobj(data, self.bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Cannot write blob {path}: {e}", path=path) from e

        logger.debug(f"Uploaded blob: {{'bucket': {self.bucket!r}, 'key': {key!r}, 'content_type': {content_type!r}}}")

    def copy(self, source: str, destination: str) -> None:
        src_key = _clean_key(source)
        dst_key = _clean_key(destination)
        try:
            self._client.copy_object(
                Bucket=self.bucket,
                Key=dst_key,
                CopySource={"Bucket": self.bucket, "Key": src_key},
            )
        except ClientError as e:
            if self._is_not_found(e):
                raise BlobNotFoundError(f"Blob not found: {source}", path=source) from e
            raise StorageError(f"Cannot copy blob {source} -> {destination}: {e}", path=source) from e
        except BotoCoreError as e:
            raise StorageError(f"Cannot copy blob {source} -> {destination}: {e}", path=source) from e

    def delete(self, path: str) -> None:
        key = _clean_key(path)
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Cannot delete blob {path}: {e}", path=path) from e

    def describe(self, path: str) -> str:
        return f"s3://{self.bucket}/{_clean_key(path)}"
