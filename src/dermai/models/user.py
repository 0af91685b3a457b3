from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from ..database import Base


class User(Base):
    """SQLAlchemy model for application users."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, unique=True, nullable=False)
    email = Column(String, unique=True, nullable=False)
    # bcrypt hash, never the plaintext
    password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
