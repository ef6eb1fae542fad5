"""Database models and connection for job persistence."""
import os
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Boolean, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

DATABASE_URL = os.getenv("LONGSCRIBE_DATABASE_URL", "sqlite:///jobs.db")

# Create engine and session
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Job(Base):
    """Job model for tracking transcription jobs.

    Note: API keys are NEVER stored in the database for security.
    They are passed directly to the worker and only kept in memory.
    """
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, index=True)
    status = Column(String, nullable=False)  # queued, processing, completed, failed, cancelled
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    audio_filename = Column(String, nullable=False)
    skip_summary = Column(Boolean, default=False, nullable=False)
    delay_ms = Column(Integer, nullable=True)
    error_message = Column(String, nullable=True)
    transcript_filename = Column(String, nullable=True)
    summary_filename = Column(String, nullable=True)
    chunk_count = Column(Integer, nullable=True)
    failure_count = Column(Integer, nullable=True)


def init_db():
    """Initialize the database, creating tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Get a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
