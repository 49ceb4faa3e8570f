"""Key-value stores backing the credential vault.

The vault only ever reads, writes, or deletes one whole serialized blob per
key, so any store offering those three operations can back it.
"""

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session

from btc_monitor.models.credential import CredentialBlob

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process store, used by tests and the CLI dry runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class SQLStore:
    """Store blobs in the ``credential_blob`` table, one row per key."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get(self, key: str) -> str | None:
        with Session(self.engine) as session:
            row = session.get(CredentialBlob, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with Session(self.engine) as session:
            row = session.get(CredentialBlob, key)
            if row is None:
                row = CredentialBlob(key=key, value=value)
            else:
                row.value = value
                row.updated_at = datetime.now(timezone.utc)
            session.add(row)
            session.commit()

    def delete(self, key: str) -> None:
        with Session(self.engine) as session:
            row = session.get(CredentialBlob, key)
            if row is not None:
                session.delete(row)
                session.commit()
                logger.debug(f"Deleted credential blob {key[:20]}...")
