"""
Study Buddy Matchmaker - Configuration Management

Loads configuration from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    # Application
    APP_NAME: str = "Study Buddy Matchmaker"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    
    # Shared store: "auto" falls back to memory when Redis is unreachable
    STORAGE_BACKEND: str = "auto"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CONNECT_TIMEOUT_SECONDS: float = 2.0
    
    # Session lifecycle
    SESSION_TTL_SECONDS: int = 3600
    BLOCK_TTL_SECONDS: int = 30 * 24 * 60 * 60
    MATCH_TIMEOUT_SECONDS: float = 60.0
    
    # Rate limits (requests per window, per client address)
    RATE_LIMIT_API_REQUESTS: int = 100
    RATE_LIMIT_API_WINDOW_SECONDS: int = 15 * 60
    RATE_LIMIT_MATCH_REQUESTS: int = 10
    RATE_LIMIT_MATCH_WINDOW_SECONDS: int = 5 * 60
    RATE_LIMIT_REPORT_REQUESTS: int = 5
    RATE_LIMIT_REPORT_WINDOW_SECONDS: int = 60 * 60
    
    # HTTP polling transport
    POLL_INBOX_TTL_SECONDS: int = 300
    POLL_IDLE_TIMEOUT_SECONDS: int = 120
    
    # Report archive (SQLAlchemy)
    DATABASE_URL: str = "sqlite:///./study_buddy_reports.db"
    ARCHIVE_BATCH_SIZE: int = 100
    ARCHIVE_INTERVAL_SECONDS: int = 60
    MAINTENANCE_INTERVAL_SECONDS: int = 15
    
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    
    # Security
    ALLOWED_HOSTS: List[str] = ["*"]
    CORS_ORIGINS: List[str] = ["*"]
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
