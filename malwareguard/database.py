import logging
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, declarative_base
from malwareguard.config import settings

logger = logging.getLogger(__name__)


def _engine_for(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    # File-backed SQLite needs its directory; FastAPI serves from worker threads
    if url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args={"check_same_thread": False})


engine = _engine_for(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

def get_db():
    """Dependency for FastAPI routes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db(bind=None):
    """Initialize database tables"""
    # Models must be imported so they register with 'Base'
    import malwareguard.models  # noqa: F401

    logger.info("🔄 Creating settings tables...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ Tables created successfully!")
