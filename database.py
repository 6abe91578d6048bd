import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.util.exc import CommandError
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import StorageError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


class Base(DeclarativeBase):
    pass


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _create_engine(db_path: Path) -> Engine:
    eng = create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )
    event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def upgrade_schema(engine: Engine) -> None:
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    with engine.begin() as connection:
        cfg.attributes["connection"] = connection
        command.upgrade(cfg, "head")


class PersistentStore:
    """Owns the single on-disk SQLite cache file.

    All sessions are handed out under one re-entrant lock, so schema setup,
    reads and writes never interleave (single-writer discipline). The engine is
    created lazily by the first operation and recreated after ``close()``.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None) -> None:
        self._db_path = Path(db_path) if db_path else get_settings().database_path
        self._lock = threading.RLock()
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def set_db_path(self, path: Union[str, Path]) -> None:
        with self._lock:
            new_path = Path(path)
            if new_path == self._db_path:
                return
            if self._engine is not None:
                logger.info(f"store_redirect: from={self._db_path} to={new_path}")
                self._dispose()
            self._db_path = new_path

    def ensure_initialized(self) -> None:
        if self._engine is not None:
            return
        with self._lock:
            if self._engine is not None:
                return
            try:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                self._db_path.touch(exist_ok=True)
            except OSError as exc:
                raise StorageError(
                    f"Cannot create cache database at {self._db_path}"
                ) from exc

            engine = _create_engine(self._db_path)
            try:
                upgrade_schema(engine)
            except (SQLAlchemyError, CommandError) as exc:
                engine.dispose()
                raise StorageError(
                    f"Failed to initialize cache schema at {self._db_path}"
                ) from exc
            self._engine = engine
            self._sessionmaker = sessionmaker(
                bind=engine, autoflush=False, expire_on_commit=False
            )
            logger.info(f"store_initialized: path={self._db_path}")

    def close(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._dispose()
                logger.info(f"store_closed: path={self._db_path}")

    def _dispose(self) -> None:
        assert self._engine is not None
        self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        with self._lock:
            self.ensure_initialized()
            assert self._sessionmaker is not None
            session: Session = self._sessionmaker()
            try:
                yield session
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                raise StorageError(f"Cache database operation failed: {exc}") from exc
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
