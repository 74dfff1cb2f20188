from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ledgerlens.core.config import settings


def _build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # Local runs and tests: one shared connection, usable from the threadpool
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )

    # Supabase Postgres
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_recycle=300,    # Recycle connections after 5 minutes
        pool_size=5,         # Max pool size
        max_overflow=10,     # Max overflow connections
        echo=False,          # Don't log SQL queries
        connect_args={
            "sslmode": "require",       # Force SSL for Supabase
            "connect_timeout": 10,      # Timeout after 10 seconds
        },
    )


engine = _build_engine(settings.DATABASE_URL)

# Create SessionLocal class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for models
Base = declarative_base()


def init_db() -> None:
    """Create all tables. Only used for local databases; Supabase owns its schema."""
    from ledgerlens.models import enrichment_log, prompt_draft, statement, transaction, user  # noqa: F401

    Base.metadata.create_all(bind=engine)


# Dependency for FastAPI routes
def get_db():
    """
    Dependency that provides a database session.
    Automatically closes session after request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
