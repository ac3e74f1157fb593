from __future__ import annotations

import io
import threading
from typing import AsyncIterator, Optional

import pytest
from PIL import Image

from quotagate.auth import SudoKeyValidator
from quotagate.db import init_schema, make_engine, make_session_factory
from quotagate.gateway import Gateway
from quotagate.ledger import QuotaLedger
from quotagate.registry import PartitionDefinition, PartitionRegistry
from quotagate.storage import PUBLIC_READ, BlobStore, BlobStoreError, ObjectInfo, ObjectNotFound
from quotagate.validations import default_pipeline

SUDO_KEY = "sudo-secret"


class MemoryBlobStore(BlobStore):
    """In-process stand-in for S3 that can be told to fail."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str, str]] = {}
        self.fail_put = False
        self.fail_head = False
        self.fail_delete: set[str] = set()
        self.puts: list[str] = []
        self.put_started = threading.Event()
        self.hold_put: Optional[threading.Event] = None
        self.deletes: list[str] = []
        self._lock = threading.Lock()

    def put_object(self, path, data, *, content_type, acl=PUBLIC_READ):
        self.put_started.set()
        if self.hold_put is not None:
            self.hold_put.wait(5)
        with self._lock:
            self.puts.append(path)
            if self.fail_put:
                raise BlobStoreError("put failed")
            self.objects[path] = (bytes(data), content_type, acl)

    def head_object(self, path):
        if self.fail_head:
            raise BlobStoreError("head failed")
        with self._lock:
            if path not in self.objects:
                raise ObjectNotFound(path)
            data, content_type, _ = self.objects[path]
        return ObjectInfo(size=len(data), content_type=content_type)

    def delete_object(self, path):
        with self._lock:
            self.deletes.append(path)
            if path in self.fail_delete:
                raise BlobStoreError("delete failed")
            self.objects.pop(path, None)


async def body_of(data: bytes, chunk_size: int = 7) -> AsyncIterator[bytes]:
    for i in range(0, len(data), chunk_size):
        yield data[i : i + chunk_size]


def make_image(fmt: str, width: int, height: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def sessions(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'quotagate.db'}")
    init_schema(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def pipeline():
    return default_pipeline()


@pytest.fixture
def registry(sessions, pipeline):
    return PartitionRegistry(sessions, pipeline)


@pytest.fixture
def ledger(sessions):
    return QuotaLedger(sessions)


@pytest.fixture
def blobs():
    return MemoryBlobStore()


@pytest.fixture
def gateway(registry, ledger, pipeline, blobs):
    return Gateway(
        registry=registry,
        ledger=ledger,
        pipeline=pipeline,
        blobs=blobs,
        sudo=SudoKeyValidator(SUDO_KEY),
        max_upload_bytes=1024 * 1024,
    )


@pytest.fixture
def make_partition(registry):
    def _make(name="images", **kwargs):
        kwargs.setdefault("path_prefix", f"{name}/")
        return registry.create_partition(PartitionDefinition(name=name, **kwargs))

    return _make
