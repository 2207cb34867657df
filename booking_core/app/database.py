import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    """Create an engine; SQLite gets cross-thread access and FK enforcement."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    # check_same_thread=False: sessions are used from FastAPI worker threads
    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 15},
    )

    @event.listens_for(engine, "connect")
    def enable_sqlite_fk(dbapi_connection, _):
        # BEGIN is emitted by SQLAlchemy (see below), not by the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        # writers serialize at BEGIN instead of failing on lock upgrade
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = build_engine(settings.resolved_database_url)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine
)


# Dependency для FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_transaction_support(engine: Engine, mode: str = "auto") -> bool:
    """
    Decide once whether booking workflows run inside a single transaction.

    mode: "enabled" / "disabled" force the answer, "auto" opens and commits
    a trivial transaction against the backend.
    """
    if mode == "enabled":
        return True
    if mode == "disabled":
        logger.warning("Transactions disabled by configuration, using sequential mode")
        return False

    try:
        with engine.connect() as conn:
            with conn.begin():
                conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(
            f"Transaction check failed ({e}); booking workflows will run "
            f"without transactions"
        )
        return False

    logger.info("Transaction check succeeded for %s backend", engine.dialect.name)
    return True
