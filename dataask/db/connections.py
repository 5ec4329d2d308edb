"""
Registry of SQLite connections the application can query and import into.

Every connection gets its own SQLAlchemy engine. Engines are configured so that
``engine.begin()`` emits a real ``BEGIN``: pysqlite's implicit transaction
handling would otherwise auto-commit DDL, and a failed import could leave a
half-created table behind.
"""
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dataask.core.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)


def create_sqlite_engine(path: str) -> Engine:
    """Create an engine for ``path`` with explicit, DDL-inclusive transactions."""
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@dataclass
class SQLiteConnection:
    id: str
    name: str
    filename: str
    engine: Engine
    created_at: datetime = field(default_factory=datetime.now)
    write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class ConnectionManager:
    """Owns the engines for every registered SQLite database."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self._connections: Dict[str, SQLiteConnection] = {}
        self._lock = threading.Lock()

    def create_connection(self, name: str, filename: str, *, must_exist: bool = True) -> SQLiteConnection:
        """Register a SQLite database file and verify it can be opened."""
        path = os.path.abspath(filename)
        if must_exist and not os.path.isfile(path):
            raise ValidationError(f"SQLite database file '{filename}' does not exist")

        engine = create_sqlite_engine(path)
        try:
            # Test connection eagerly so failures surface immediately.
            with engine.connect() as conn:
                conn.execute(text("SELECT count(*) FROM sqlite_master"))
        except SQLAlchemyError as exc:
            engine.dispose()
            raise ValidationError(f"Invalid SQLite database file '{filename}': {exc}") from exc

        connection = SQLiteConnection(id=str(uuid.uuid4()), name=name, filename=path, engine=engine)
        with self._lock:
            self._connections[connection.id] = connection
        logger.info("Database connection created: %s (sqlite) -> %s", name, path)
        return connection

    def create_import_database(self, name: str) -> SQLiteConnection:
        """Create a fresh database file under ``data_dir`` for a one-shot import."""
        try:
            os.makedirs(self.data_dir, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create data directory '{self.data_dir}': {exc}") from exc
        path = os.path.join(self.data_dir, f"import_{uuid.uuid4()}.sqlite")
        return self.create_connection(name, path, must_exist=False)

    def get(self, connection_id: str) -> SQLiteConnection:
        with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None:
            raise NotFoundError(f"Database connection '{connection_id}' not found")
        return connection

    def find(self, connection_id: Optional[str]) -> Optional[SQLiteConnection]:
        if not connection_id:
            return None
        with self._lock:
            return self._connections.get(connection_id)

    def list_connections(self) -> List[SQLiteConnection]:
        with self._lock:
            return sorted(self._connections.values(), key=lambda c: c.created_at)

    def delete_connection(self, connection_id: str) -> None:
        with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection is None:
            raise NotFoundError(f"Database connection '{connection_id}' not found")
        connection.engine.dispose()
        logger.info("Database connection %s (%s) closed", connection_id, connection.name)

    def dispose_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for connection in connections:
            connection.engine.dispose()
