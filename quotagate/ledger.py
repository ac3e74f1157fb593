import logging

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ._upsert import insert_for
from .errors import InternalError, QuotaExceeded
from .models import Partition, PartitionUsage

logger = logging.getLogger(__name__)


class QuotaLedger:
    """
    Per-partition byte usage with atomic admission control.

    ``reserve`` is a single conditional upsert, so concurrent uploads to one
    partition need no lock: the database either admits the increment under the
    partition's ceiling or rejects it.
    """

    def __init__(self, sessions: sessionmaker[Session]) -> None:
        self._sessions = sessions

    def reserve(self, partition_name: str, size: int) -> None:
        # First reservation: the inserted name is NULL unless the partition's
        # ceiling covers `size`, which violates NOT NULL. Later reservations:
        # the update guard leaves zero rows affected when the ceiling is hit.
        ceiling = (
            select(Partition.max_size).where(Partition.name == partition_name).scalar_subquery()
        )
        admitted_name = (
            select(Partition.name)
            .where(Partition.name == partition_name, Partition.max_size >= size)
            .scalar_subquery()
        )
        with self._sessions() as db:
            insert = insert_for(db)
            stmt = insert(PartitionUsage).values(name=admitted_name, size=size)
            stmt = stmt.on_conflict_do_update(
                index_elements=[PartitionUsage.name],
                set_={"size": PartitionUsage.size + size},
                where=ceiling >= PartitionUsage.size + size,
            )
            try:
                affected = db.connection().execute(stmt).rowcount
                db.commit()
            except IntegrityError:
                db.rollback()
                raise QuotaExceeded()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error writing to usage of partition %s", partition_name)
                raise InternalError()

        if affected == 0:
            raise QuotaExceeded()
        logger.debug("Reserved %d bytes in partition %s", size, partition_name)

    def release(self, partition_name: str, size: int) -> bool:
        """Give ``size`` bytes back to the partition, never going below zero.

        Failures are logged and reported as False; callers must not fail an
        operation because of it.
        """
        stmt = (
            update(PartitionUsage)
            .where(PartitionUsage.name == partition_name)
            .values(
                size=case(
                    (PartitionUsage.size >= size, PartitionUsage.size - size),
                    else_=0,
                )
            )
        )
        try:
            with self._sessions() as db:
                db.connection().execute(stmt)
                db.commit()
        except SQLAlchemyError:
            logger.exception(
                "Error releasing %d bytes from usage of partition %s", size, partition_name
            )
            return False
        logger.debug("Released %d bytes from partition %s", size, partition_name)
        return True

    def usage(self, partition_name: str) -> int:
        with self._sessions() as db:
            size = db.scalar(
                select(PartitionUsage.size).where(PartitionUsage.name == partition_name)
            )
        return size or 0
