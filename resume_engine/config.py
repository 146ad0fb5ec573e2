from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os

class Settings(BaseSettings):
    # Language model provider: "openai" or "anthropic"
    llm_provider: str = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    claude_api_key: str = ""
    claude_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 4000
    llm_temperature: float = 0.1

    # Database - DATABASE_URL is used when set, fallback to SQLite for local
    database_url: Optional[str] = None

    # Blob storage: "s3" or "local"
    storage_backend: str = "local"
    upload_dir: str = "./uploads"
    aws_s3_bucket: str = ""
    aws_s3_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    signed_url_ttl: int = 3600
    max_upload_mb: int = 10

    # Job search
    adzuna_app_id: str = ""
    adzuna_app_key: str = ""
    adzuna_country: str = "us"
    job_search_cache_ttl: int = 3600

    # Optional Redis cache
    redis_url: str = ""

    # Progress stream
    heartbeat_seconds: float = 30.0

    # App Settings
    app_name: str = "ResumeEngine"
    app_version: str = "1.0.0"
    debug: bool = False
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"
    upload_rate_limit: str = "5/minute"
    search_rate_limit: str = "20/minute"

    # API Settings
    backend_host: str = "0.0.0.0"
    backend_port: int = int(os.getenv("PORT", "8000"))

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Auto-detect database URL
        if self.database_url is None:
            platform_db = os.getenv("DATABASE_URL")
            if platform_db:
                # SQLAlchemy async needs postgresql+asyncpg://
                if platform_db.startswith("postgres://"):
                    self.database_url = platform_db.replace("postgres://", "postgresql+asyncpg://", 1)
                elif platform_db.startswith("postgresql://"):
                    self.database_url = platform_db.replace("postgresql://", "postgresql+asyncpg://", 1)
                else:
                    self.database_url = platform_db
            else:
                self.database_url = "sqlite+aiosqlite:///./resume_engine.db"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

@lru_cache()
def get_settings() -> Settings:
    return Settings()
