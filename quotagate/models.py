from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .errors import InvalidPath


class Base(DeclarativeBase):
    pass


class Partition(Base):
    __tablename__ = "partitions"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    max_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    path_prefix: Mapped[str] = mapped_column(Text, nullable=False)
    exact: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validates: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def resolve_path(self, relative_path: str = "") -> str:
        """Return the object key a client-relative path maps to in this partition.

        Exact partitions always resolve to their fixed path. Prefix partitions
        join the relative path under the prefix with exactly one separator
        between them; an empty relative path yields the bare prefix.
        """
        if self.exact or not relative_path:
            return self.path_prefix
        if ".." in relative_path.split("/"):
            raise InvalidPath("Relative path must not contain '..'")

        root = self.path_prefix
        if not root.endswith("/"):
            root += "/"
        if root.startswith("/"):
            root = root[1:]
        if relative_path.startswith("/"):
            relative_path = relative_path[1:]
        return root + relative_path


class PartitionUsage(Base):
    __tablename__ = "partitions_usage"

    name: Mapped[str] = mapped_column(
        String(255), ForeignKey("partitions.name", ondelete="CASCADE"), primary_key=True
    )
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)


class PartitionFile(Base):
    # No foreign key to partitions: rows of a deleted partition stay around
    # until the sweep has removed their blobs.
    __tablename__ = "partitions_files"
    __table_args__ = (Index("partitions_file_name", "name"),)

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    file_path: Mapped[str] = mapped_column(Text, primary_key=True)


class KeyGrant(Base):
    __tablename__ = "keys"
    __table_args__ = (Index("keys_key", "key"),)

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    partition: Mapped[str] = mapped_column(
        String(255), ForeignKey("partitions.name", ondelete="CASCADE"), primary_key=True
    )
