# db.py
import os
import logging

from sqlalchemy import create_engine, event, select

logger = logging.getLogger("app")

_engine = None


def _normalize_url(database_url: str) -> str:
    # SAFETY NET: force PyMySQL if someone pasted mysql://
    if database_url.startswith("mysql://"):
        database_url = "mysql+pymysql://" + database_url[len("mysql://"):]
        logger.info("Normalized DATABASE_URL to PyMySQL")
    return database_url


def _enable_sqlite_savepoints(engine):
    """
    pysqlite defers BEGIN and breaks SAVEPOINT; take over transaction
    control so begin_nested() behaves like it does on MySQL/Postgres.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_for_url(database_url: str):
    database_url = _normalize_url(database_url)

    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, future=True)
        _enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=1800,  # recycle connections every 30m
        pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
        max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "5")),
        future=True,
    )


def get_engine():
    global _engine
    if _engine is None:
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set")
        _engine = create_engine_for_url(database_url)
    return _engine


def init_db(engine=None):
    """
    Create all league tables and make sure the season singleton (id=1) exists.
    """
    from services.constants import DRAFT_TIMER_DEFAULT_S, SeasonPhase
    from services.schema import metadata, season

    engine = engine or get_engine()
    metadata.create_all(engine)

    with engine.begin() as conn:
        exists = conn.execute(select(season.c.id).where(season.c.id == 1)).first()
        if not exists:
            conn.execute(
                season.insert().values(
                    id=1,
                    state=SeasonPhase.PRE_SEASON.value,
                    draft_timer_duration=DRAFT_TIMER_DEFAULT_S,
                )
            )
            logger.info("Seeded season row (id=1)")
    return engine
