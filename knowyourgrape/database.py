"""
Database service for Know Your Grape API
Connection handling and session management
"""
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from .config import get_database_url

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseService:
    """Database service with connection management"""

    def __init__(self, database_url=None, **engine_kwargs):
        self.database_url = database_url
        self.engine_kwargs = engine_kwargs
        self.engine = None
        self.SessionLocal = None

    def init_database(self):
        """Initialize database connection"""
        if self.engine is None:
            database_url = self.database_url or get_database_url()
            logger.info("Connecting to database: %s@***", database_url.split('@')[0])

            kwargs = dict(self.engine_kwargs)
            if database_url.startswith("sqlite"):
                kwargs.setdefault("connect_args", {"check_same_thread": False})
            else:
                kwargs.setdefault("pool_pre_ping", True)
                kwargs.setdefault("pool_recycle", 300)
                kwargs.setdefault("pool_timeout", 10)

            self.engine = create_engine(database_url, echo=False, **kwargs)
            if self.engine.dialect.name == "sqlite":
                event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

            self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def get_session(self):
        """Get database session"""
        if self.SessionLocal is None:
            self.init_database()
        return self.SessionLocal()

    def create_all(self):
        """Create all tables (local development and tests; production uses Alembic)"""
        from .models import Base

        if self.engine is None:
            self.init_database()
        Base.metadata.create_all(bind=self.engine)

    def test_connection(self):
        """Test database connection"""
        try:
            if self.engine is None:
                self.init_database()

            with self.engine.connect() as connection:
                result = connection.execute(text("SELECT 1"))
                return {"status": "connected", "result": result.scalar()}
        except Exception as e:
            return {"status": "error", "error": str(e)}


# Global database service instance
db_service = DatabaseService()


def get_db():
    """FastAPI dependency yielding a session that is always closed"""
    db = db_service.get_session()
    try:
        yield db
    finally:
        db.close()
