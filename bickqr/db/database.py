"""
Database connection using SQLAlchemy.
PostgreSQL in production; the job queue lives in the same database.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base

from bickqr.core.config import DATABASE_URL

Base = declarative_base()


def make_engine(url: str = DATABASE_URL):
    """Create an engine. SQLite (tests, local dev) needs cross-thread access."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


def init_db(bind):
    """Create all tables, plus the updated_at trigger on PostgreSQL."""
    from bickqr.db.models import Bick, BickAsset, QueueJob  # noqa: F401

    Base.metadata.create_all(bind=bind)

    if bind.dialect.name != "postgresql":
        return

    with bind.connect() as conn:
        conn.execute(text("""
            CREATE OR REPLACE FUNCTION update_modified_column()
            RETURNS TRIGGER AS $$
            BEGIN
                NEW.updated_at = NOW();
                RETURN NEW;
            END;
            $$ LANGUAGE plpgsql;
        """))

        # Create trigger on bicks table (ignore if exists)
        conn.execute(text("""
            DO $$
            BEGIN
                IF NOT EXISTS (
                    SELECT 1 FROM pg_trigger WHERE tgname = 'set_bick_timestamp'
                ) THEN
                    CREATE TRIGGER set_bick_timestamp
                    BEFORE UPDATE ON bicks
                    FOR EACH ROW
                    EXECUTE FUNCTION update_modified_column();
                END IF;
            END $$;
        """))
        conn.commit()
