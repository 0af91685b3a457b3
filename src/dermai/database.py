"""Database tables for uploaded images and detection results."""

from datetime import datetime
from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Image(Base):
    """Metadata row for an uploaded image blob."""

    __tablename__ = "images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # uploads may be anonymous
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    filename = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    uploaded_at = Column(DateTime, default=datetime.utcnow)


class DetectionResult(Base):
    """A disease label, confidence score and medicine recommendation."""

    __tablename__ = "detection_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    image_id = Column(Integer, ForeignKey("images.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    disease = Column(String, nullable=False)
    accuracy = Column(Float, nullable=False)
    medicine = Column(String, nullable=False)
    detected_at = Column(DateTime, default=datetime.utcnow)


def init_db(engine) -> None:
    """Create database tables if they do not exist."""
    from .models import user  # noqa: F401  registers the users table

    Base.metadata.create_all(bind=engine)
