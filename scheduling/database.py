import logging
from contextlib import contextmanager
from threading import Lock

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from scheduling.core import config
from scheduling.errors import SchedulingError, TransientStoreError

logger = logging.getLogger(__name__)


def _configure_sqlite(engine: Engine) -> None:
    # pysqlite's implicit transactions defer locking until the first write,
    # which lets two writers deadlock instead of queueing on the busy timeout.
    @event.listens_for(engine, 'connect')
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

    @event.listens_for(engine, 'begin')
    def _on_begin(connection):
        connection.exec_driver_sql('BEGIN IMMEDIATE')


def build_engine(database_url: str, timeout_seconds: float = config.STORE_TIMEOUT_SECONDS) -> Engine:
    """Create an engine whose store interactions are bounded by ``timeout_seconds``."""
    if database_url.startswith('sqlite'):
        engine = create_engine(
            database_url,
            connect_args={'timeout': timeout_seconds, 'check_same_thread': False},
        )
        _configure_sqlite(engine)
        return engine

    connect_args = {}
    if database_url.startswith('postgresql'):
        connect_args = {
            'connect_timeout': max(1, int(timeout_seconds)),
            'options': f'-c statement_timeout={int(timeout_seconds * 1000)}',
        }

    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_TABLES = (
    'availability_templates',
    'availability_slots',
    'session_bookings',
    'provider_activities',
    'provider_rates',
)


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        # Register every mapped table on Base.metadata before creating it.
        from scheduling.models import (  # noqa: F401
            availability_slot,
            availability_template,
            provider_activity,
            provider_rate,
            session_booking,
        )

        inspector = inspect(engine)
        existing_tables = set(inspector.get_table_names())
        missing_tables = [name for name in SCHEDULING_TABLES if name not in existing_tables]

        if missing_tables:
            logger.info('Creating scheduling tables: %s', ', '.join(missing_tables))
            Base.metadata.create_all(
                bind=engine,
                tables=[Base.metadata.tables[name] for name in SCHEDULING_TABLES],
            )

        _scheduling_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_postgresql(db: Session) -> bool:
    return db.get_bind().dialect.name == 'postgresql'


@contextmanager
def store_errors(db: Session, action: str):
    """Roll back on failure and turn driver errors into ``TransientStoreError``.

    Integrity conflicts are re-raised untouched so callers can map them to
    their own domain error.
    """
    try:
        yield
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning('Store failure while attempting to %s: %s', action, exc)
        raise TransientStoreError(
            f'The scheduling store is unavailable; could not {action}.',
            transition=action,
        ) from exc
    except SchedulingError:
        db.rollback()
        raise
