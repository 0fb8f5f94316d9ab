from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

from config import settings

# Load environment variables from .env file
load_dotenv()

# --- Engine ---
# Pool sizing only applies to server databases; SQLite uses its own pool.
engine_kwargs = {"pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    engine_kwargs.update(
        pool_size=10,  # The number of connections to keep open in the pool.
        max_overflow=20,  # The maximum number of connections to allow in addition to pool_size.
        pool_recycle=3600,  # Recycle connections after 1 hour to prevent timeout issues.
    )
else:
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(settings.database_url, **engine_kwargs)

# Create a SessionLocal class for creating new Session objects
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create a Base class for declarative models
Base = declarative_base()

# --- Dependency for FastAPI ---
def get_db():
    """
    FastAPI dependency that provides a database session per request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
