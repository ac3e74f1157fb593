from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_for(db: Session):
    """The dialect ``insert`` construct that supports ON CONFLICT for ``db``'s engine."""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported metadata store dialect: {name}")
