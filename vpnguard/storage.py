"""Key/value persistence backends for preferences and session history.

Values are JSON strings. Backends raise on failure; callers log and keep
working from memory.
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from sqlalchemy import DateTime, Integer, String, Text, create_engine, func, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from .config import VPNGuardConfig
from .utils.logging import get_logger

logger = get_logger("storage")


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage, mostly for tests and ephemeral runs."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStorage:
    """All keys in a single JSON object file, rewritten atomically."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent), prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)


class Base(DeclarativeBase):
    pass


class StoredValue(Base):
    __tablename__ = "stored_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class SqlStorage:
    """SQLAlchemy-backed storage, one row per key."""

    def __init__(self, database_url: str = "sqlite:///./vpnguard.db", echo: bool = False):
        self._engine = create_engine(database_url, echo=echo, future=True)
        Base.metadata.create_all(self._engine)

    def get_item(self, key: str) -> Optional[str]:
        with Session(self._engine) as session:
            row = session.execute(
                select(StoredValue).where(StoredValue.key == key)
            ).scalar_one_or_none()
            return row.value if row else None

    def set_item(self, key: str, value: str) -> None:
        with Session(self._engine) as session:
            row = session.execute(
                select(StoredValue).where(StoredValue.key == key)
            ).scalar_one_or_none()
            if row:
                row.value = value
            else:
                session.add(StoredValue(key=key, value=value))
            session.commit()

    def remove_item(self, key: str) -> None:
        with Session(self._engine) as session:
            row = session.execute(
                select(StoredValue).where(StoredValue.key == key)
            ).scalar_one_or_none()
            if row:
                session.delete(row)
                session.commit()

    def close(self) -> None:
        self._engine.dispose()


def create_storage(config: VPNGuardConfig) -> KeyValueStorage:
    """Build the backend selected by ``config.storage_backend``."""
    if config.storage_backend == "memory":
        storage: KeyValueStorage = MemoryStorage()
    elif config.storage_backend == "sqlite":
        storage = SqlStorage(config.database_url, echo=config.debug)
    else:
        storage = JsonFileStorage(config.storage_path)
    logger.info("storage_backend_selected", backend=config.storage_backend)
    return storage
