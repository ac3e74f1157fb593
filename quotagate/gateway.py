import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .auth import SudoKeyValidator
from .config import HALF_GIB
from .errors import (
    InternalError,
    InvalidHeaders,
    InvalidPath,
    PartitionExists,
    QuotaExceeded,
)
from .ledger import QuotaLedger
from .models import Partition
from .registry import PartitionDefinition, PartitionRegistry
from .storage import BlobStore, BlobStoreError, ObjectNotFound
from .validations import ValidationPipeline

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class SweepReport:
    partition: str
    deleted: int
    failed: int


async def read_capped(body: AsyncIterator[bytes], limit: int) -> bytes:
    buf = bytearray()
    async for chunk in body:
        buf += chunk[: limit - len(buf)]
        if len(buf) >= limit:
            break
    return bytes(buf)


class Gateway:
    """
    Coordinates uploads and deletes across the quota ledger, the validation
    pipeline, the blob store and the partition registry.

    The metadata store and the blob store cannot commit together, so every
    upload reserves quota first and releases it again if a later step fails.
    Recorded usage may over-count what the blob store holds; it never
    under-counts.
    """

    def __init__(
        self,
        *,
        registry: PartitionRegistry,
        ledger: QuotaLedger,
        pipeline: ValidationPipeline,
        blobs: BlobStore,
        sudo: SudoKeyValidator,
        max_upload_bytes: int = HALF_GIB,
        default_partition_size: int = HALF_GIB,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.pipeline = pipeline
        self.blobs = blobs
        self._sudo = sudo
        self.max_upload_bytes = max_upload_bytes
        self.default_partition_size = default_partition_size

    async def _resolve(self, key: str, partition_name: str, relative_path: str) -> tuple[Partition, str]:
        partition = await asyncio.to_thread(self.registry.authorize, key, partition_name)
        return partition, partition.resolve_path(relative_path or "")

    async def _compensate(self, partition_name: str, size: int) -> None:
        # Shielded so a cancelled request still gives its reservation back.
        released = await asyncio.shield(asyncio.to_thread(self.ledger.release, partition_name, size))
        if not released:
            logger.error(
                "Reservation of %d bytes in partition %s could not be released", size, partition_name
            )

    async def _record_after_cancel(self, partition_name: str, path: str) -> None:
        logger.warning("Upload of %s was cancelled after the blob was stored", path)
        try:
            await asyncio.shield(asyncio.to_thread(self.registry.record_file, partition_name, path))
        except InternalError:
            logger.critical(
                "Blob %s was stored but not recorded for partition %s", path, partition_name
            )

    async def upload(
        self,
        key: str,
        partition_name: str,
        relative_path: str,
        *,
        content_length: Optional[int],
        content_type: Optional[str],
        body: AsyncIterator[bytes],
    ) -> int:
        partition, path = await self._resolve(key, partition_name, relative_path)

        if content_length is None or content_length < 0:
            raise InvalidHeaders()
        if content_length > self.max_upload_bytes:
            raise QuotaExceeded("File exceeds the maximum upload size")

        await asyncio.to_thread(self.ledger.reserve, partition.name, content_length)

        armed = True
        try:
            data = await read_capped(body, content_length)
            if partition.validates:
                data = await asyncio.to_thread(self.pipeline.execute, data, partition.validates)

            put = asyncio.ensure_future(
                asyncio.to_thread(
                    self.blobs.put_object,
                    path,
                    data,
                    content_type=content_type or DEFAULT_CONTENT_TYPE,
                )
            )
            try:
                await asyncio.shield(put)
            except asyncio.CancelledError:
                # A write handed to the store keeps running; settle on its outcome.
                await asyncio.wait([put])
                if not put.cancelled() and put.exception() is None:
                    armed = False
                    await self._record_after_cancel(partition.name, path)
                raise
            except BlobStoreError:
                logger.exception("Error uploading %s to the blob store", path)
                raise InternalError()

            # The blob exists from here on, so its quota stays charged even if
            # recording it fails.
            armed = False
            try:
                await asyncio.to_thread(self.registry.record_file, partition.name, path)
            except InternalError:
                logger.critical(
                    "Blob %s was stored but not recorded for partition %s", path, partition.name
                )
                raise
        finally:
            if armed:
                await self._compensate(partition.name, content_length)

        logger.info("Uploaded %s (%d bytes) to partition %s", path, content_length, partition.name)
        return content_length

    async def delete(self, key: str, partition_name: str, relative_path: str) -> None:
        partition, path = await self._resolve(key, partition_name, relative_path)

        try:
            info = await asyncio.to_thread(self.blobs.head_object, path)
        except ObjectNotFound:
            raise InvalidPath()
        except BlobStoreError:
            logger.exception("Error stating %s in the blob store", path)
            raise InternalError()

        try:
            await asyncio.to_thread(self.blobs.delete_object, path)
        except BlobStoreError:
            logger.exception("Error deleting %s from the blob store", path)
            raise InternalError()

        await asyncio.to_thread(self.registry.forget_file, partition.name, path)

        # Release what the store reported, not anything the client declared.
        released = await asyncio.to_thread(self.ledger.release, partition.name, info.size)
        if not released:
            logger.error(
                "Usage of partition %s still counts %d bytes of deleted %s",
                partition.name,
                info.size,
                path,
            )
        logger.info("Deleted %s (%d bytes) from partition %s", path, info.size, partition.name)

    async def create_key(self, sudo_key: str, partitions: list[str]) -> str:
        self._sudo.require(sudo_key)
        return await asyncio.to_thread(self.registry.create_key, partitions)

    async def delete_key(self, sudo_key: str, key: str) -> None:
        self._sudo.require(sudo_key)
        await asyncio.to_thread(self.registry.delete_key, key)

    async def create_partition(self, sudo_key: str, name: str, rule_set: str) -> Partition:
        self._sudo.require(sudo_key)
        definition = PartitionDefinition.from_rule_set(
            name, rule_set, default_max_size=self.default_partition_size
        )
        return await asyncio.to_thread(self.registry.create_partition, definition)

    async def delete_partition(self, sudo_key: str, name: str) -> SweepReport:
        self._sudo.require(sudo_key)
        await asyncio.to_thread(self.registry.delete_partition, name)
        return await self.sweep(name)

    async def sweep_partition(self, sudo_key: str, name: str) -> SweepReport:
        """Re-run the sweep of a deleted partition. Live partitions are refused."""
        self._sudo.require(sudo_key)
        if await asyncio.to_thread(self.registry.get_partition, name) is not None:
            raise PartitionExists("Partition still exists; delete it before sweeping")
        return await self.sweep(name)

    async def sweep(self, partition_name: str) -> SweepReport:
        """
        Delete every recorded blob of ``partition_name`` from the blob store.

        One delete is dispatched per recorded file and all of them are awaited
        before returning. A file whose delete fails keeps its record, so the
        sweep can simply be run again.
        """
        paths = await asyncio.to_thread(self.registry.list_files, partition_name)
        results = await asyncio.gather(
            *(asyncio.to_thread(self._sweep_one, partition_name, path) for path in paths)
        )
        report = SweepReport(
            partition=partition_name,
            deleted=sum(1 for ok in results if ok),
            failed=sum(1 for ok in results if not ok),
        )
        logger.info(
            "Swept partition %s: %d deleted, %d failed", partition_name, report.deleted, report.failed
        )
        return report

    def _sweep_one(self, partition_name: str, path: str) -> bool:
        try:
            self.blobs.delete_object(path)
        except BlobStoreError:
            logger.exception("Error deleting file %s of partition %s", path, partition_name)
            return False
        try:
            self.registry.forget_file(partition_name, path)
        except InternalError:
            return False
        return True
