from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///dermai.db")
    upload_dir: str = Field("uploads")
    max_upload_bytes: int = Field(10 * 1024 * 1024)
    bcrypt_rounds: int = Field(10)
    api_title: str = Field("DERMAI Backend")
    host: str = Field("0.0.0.0")
    port: int = Field(3000)
    log_level: str = Field("INFO")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


settings = Settings()
