import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ._upsert import insert_for
from .config import HALF_GIB
from .errors import (
    InternalError,
    InvalidPartition,
    InvalidRuleSet,
    PartitionExists,
    PartitionNotExists,
    PartitionsEmpty,
    UnknownKey,
)
from .models import KeyGrant, Partition, PartitionFile
from .validations import ValidationPipeline

logger = logging.getLogger(__name__)

_UNITS = {"": 1, "b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3, "tb": 1024**4}
_SIZE_RE = re.compile(r"(\d+)\s*([a-z]*)")


def parse_size(value: str) -> int:
    """Parse "N", "Nb", "Nkb", "Nmb", "Ngb" or "Ntb" (case-insensitive) into bytes."""
    m = _SIZE_RE.fullmatch(value.strip().lower())
    if not m or m.group(2) not in _UNITS:
        raise ValueError(f"invalid size: {value!r}")
    return int(m.group(1)) * _UNITS[m.group(2)]


@dataclass(frozen=True)
class PartitionDefinition:
    name: str
    path_prefix: str
    exact: bool = False
    max_size: int = HALF_GIB
    validates: str = ""

    @classmethod
    def from_rule_set(
        cls, name: str, rule_set: str, *, default_max_size: int = HALF_GIB
    ) -> "PartitionDefinition":
        """
        Build a definition from a rule set such as
        "prefix=avatars/,max-size=10mb,ensure=png+1:1".

        Rules are comma separated ``key=value`` pairs: ``prefix`` or ``exact``
        (the path rule, required), ``max-size`` and ``ensure``.
        """
        if not name:
            raise InvalidPartition("Partition name is empty")

        path_prefix = ""
        exact = False
        max_size: Optional[int] = None
        validates = ""
        for rule in rule_set.split(","):
            rule = rule.strip()
            if not rule:
                continue
            key, sep, value = rule.partition("=")
            if not sep:
                raise InvalidRuleSet()
            if key == "prefix":
                path_prefix, exact = value, False
            elif key == "exact":
                path_prefix, exact = value, True
            elif key == "max-size":
                try:
                    max_size = parse_size(value)
                except ValueError:
                    raise InvalidRuleSet()
            elif key == "ensure":
                validates = value
            else:
                raise InvalidRuleSet()

        return cls(
            name=name,
            path_prefix=path_prefix,
            exact=exact,
            max_size=default_max_size if max_size is None else max_size,
            validates=validates,
        )


class PartitionRegistry:
    """Partition definitions, key grants and the record of stored files."""

    def __init__(self, sessions: sessionmaker[Session], pipeline: ValidationPipeline) -> None:
        self._sessions = sessions
        self._pipeline = pipeline

    def resolve_partitions(self, key: str) -> list[Partition]:
        stmt = (
            select(Partition)
            .join(KeyGrant, KeyGrant.partition == Partition.name)
            .where(KeyGrant.key == key)
        )
        try:
            with self._sessions() as db:
                partitions = list(db.scalars(stmt))
        except SQLAlchemyError:
            logger.exception("Error getting partitions for key")
            raise InternalError()
        if not partitions:
            raise UnknownKey()
        return partitions

    def authorize(self, key: str, partition_name: str) -> Partition:
        for partition in self.resolve_partitions(key):
            if partition.name == partition_name:
                return partition
        raise InvalidPartition()

    def get_partition(self, name: str) -> Optional[Partition]:
        with self._sessions() as db:
            return db.get(Partition, name)

    def create_partition(self, definition: PartitionDefinition) -> Partition:
        if not definition.name:
            raise InvalidPartition("Partition name is empty")
        if not definition.path_prefix or definition.max_size <= 0:
            raise InvalidRuleSet()
        if definition.validates and not self._pipeline.is_satisfiable(definition.validates):
            raise InvalidRuleSet()

        partition = Partition(
            name=definition.name,
            max_size=definition.max_size,
            path_prefix=definition.path_prefix,
            exact=definition.exact,
            validates=definition.validates,
        )
        with self._sessions() as db:
            db.add(partition)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise PartitionExists()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error creating partition %s", definition.name)
                raise InternalError()
        logger.info("Created partition %s (max_size=%d)", partition.name, partition.max_size)
        return partition

    def delete_partition(self, name: str) -> None:
        """Delete a partition; its usage row and key grants cascade. File rows stay."""
        stmt = delete(Partition).where(Partition.name == name)
        with self._sessions() as db:
            try:
                deleted = db.connection().execute(stmt).rowcount
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error deleting partition %s", name)
                raise InternalError()
        if deleted == 0:
            raise PartitionNotExists()
        logger.info("Deleted partition %s", name)

    def create_key(self, partitions: list[str]) -> str:
        if not partitions:
            raise PartitionsEmpty()
        key = str(uuid.uuid4())
        with self._sessions() as db:
            db.add_all(KeyGrant(key=key, partition=name) for name in dict.fromkeys(partitions))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise InvalidPartition("One or more partitions do not exist")
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error inserting key")
                raise InternalError()
        return key

    def delete_key(self, key: str) -> None:
        with self._sessions() as db:
            try:
                db.execute(delete(KeyGrant).where(KeyGrant.key == key))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error deleting key")
                raise InternalError()

    def record_file(self, partition_name: str, path: str) -> None:
        with self._sessions() as db:
            insert = insert_for(db)
            stmt = (
                insert(PartitionFile)
                .values(name=partition_name, file_path=path)
                .on_conflict_do_nothing(index_elements=[PartitionFile.name, PartitionFile.file_path])
            )
            try:
                db.connection().execute(stmt)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error writing partition file %s/%s", partition_name, path)
                raise InternalError()

    def forget_file(self, partition_name: str, path: str) -> None:
        stmt = delete(PartitionFile).where(
            PartitionFile.name == partition_name, PartitionFile.file_path == path
        )
        with self._sessions() as db:
            try:
                db.execute(stmt)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Error deleting partition file %s/%s", partition_name, path)
                raise InternalError()

    def list_files(self, partition_name: str) -> list[str]:
        stmt = select(PartitionFile.file_path).where(PartitionFile.name == partition_name)
        try:
            with self._sessions() as db:
                return list(db.scalars(stmt))
        except SQLAlchemyError:
            logger.exception("Error listing files of partition %s", partition_name)
            raise InternalError()
