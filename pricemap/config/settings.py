import os
from typing import Optional
from dotenv import load_dotenv

from pricemap.utils.exceptions import ConfigurationError

# Load environment variables
load_dotenv()

STORE_BACKENDS = ("memory", "postgres", "redis")

class Settings:
    """Application configuration settings"""

    # Flask
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-key")
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "5000"))
    ALLOWED_ORIGINS: list = os.getenv(
        "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")

    # POI feed (Overpass)
    OVERPASS_URL: str = os.getenv("OVERPASS_URL", "https://overpass-api.de/api/interpreter")
    OVERPASS_TIMEOUT: float = float(os.getenv("OVERPASS_TIMEOUT", "10"))  # hard deadline, seconds
    POI_AMENITY: str = os.getenv("POI_AMENITY", "fuel")
    USER_AGENT: str = os.getenv("USER_AGENT", "pricemap/1.0")
    MAX_VIEWPORT_SPAN: float = float(os.getenv("MAX_VIEWPORT_SPAN", "20"))  # degrees

    # Annotations
    ANNOTATION_BATCH_SIZE: int = int(os.getenv("ANNOTATION_BATCH_SIZE", "200"))
    MAX_PRICE: float = float(os.getenv("MAX_PRICE", "10000"))
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory")

    # PostgreSQL
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL") or None
    DB_POOL_MIN: int = int(os.getenv("DB_POOL_MIN", "2"))
    DB_POOL_MAX: int = int(os.getenv("DB_POOL_MAX", "20"))

    # Redis
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "120"))
    RATE_LIMIT_PER_HOUR: int = int(os.getenv("RATE_LIMIT_PER_HOUR", "7200"))  # 120 * 60
    PRICE_SUBMISSIONS_PER_MINUTE: int = int(os.getenv("PRICE_SUBMISSIONS_PER_MINUTE", "10"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

    @classmethod
    def validate(cls) -> None:
        """Validate required settings"""
        if cls.STORE_BACKEND not in STORE_BACKENDS:
            raise ConfigurationError(f"Invalid STORE_BACKEND: {cls.STORE_BACKEND}")

        if cls.STORE_BACKEND == "postgres" and not cls.DATABASE_URL:
            raise ConfigurationError("DATABASE_URL is required for the postgres store")

        if cls.OVERPASS_TIMEOUT <= 0:
            raise ConfigurationError("OVERPASS_TIMEOUT must be positive")

        if cls.ANNOTATION_BATCH_SIZE < 1:
            raise ConfigurationError("ANNOTATION_BATCH_SIZE must be at least 1")

# Create singleton instance
settings = Settings()
